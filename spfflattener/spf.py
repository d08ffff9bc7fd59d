# -*- coding: utf-8 -*-
"""Sender Policy framework (SPF) records, terms, and retrieval"""

from __future__ import annotations

import logging
import re
from typing import Optional, TypedDict, Union
from collections.abc import Sequence

import dns.exception
import dns.resolver
from dns.nameserver import Nameserver
import pyleri

from spfflattener._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    SPF_RECORD_ADVISED_BYTES,
    SPF_RECORD_MAX_BYTES,
    SPF_VERSION_TAG,
    SYNTAX_ERROR_MARKER,
)
from spfflattener.utils import (
    DNSException,
    DNSExceptionNXDOMAIN,
    get_txt_records,
    log_warning,
)

"""Copyright 2019-2025 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

SPF_VERSION_TAG_REGEX_STRING = SPF_VERSION_TAG

# Loose term pattern used by the syntax grammar
SPF_TERM_REGEX_STRING = (
    r"([+\-~?])?"
    r"(mx:?|ip4:?|ip6:?|exists:?|include:?|all|a:?|redirect=|exp=|ptr:?)"
    r"([\w+/_.:\-{}%]*)"
)

# A single whitespace-delimited term, split into its parts
SPF_MECHANISM_REGEX_STRING = (
    r"^(?P<qualifier>[+\-~?])?"
    r"(?P<kind>all|include|exists|ptr|mx|ip4|ip6|a|redirect)"
    r"(?:"
    r"(?:(?<=redirect)=|(?<!redirect):)"
    r"(?P<argument>[^/\s]*))?"
    r"(?P<cidr>(?:/\d{1,3})?(?://\d{1,3})?)$"
)

SPF_MECHANISM_REGEX = re.compile(SPF_MECHANISM_REGEX_STRING, re.IGNORECASE)
CONCATENATED_ALL_REGEX = re.compile(r"\S([+\-~?])all(?=\s|$)", re.IGNORECASE)

# RFC 7208 § 4.6.4
DNS_LOOKUP_TERMS = ("include", "a", "mx", "ptr", "exists", "redirect")


class SPFError(Exception):
    """Raised when a fatal SPF error occurs"""


class SPFArgumentError(SPFError, ValueError):
    """Raised when a required argument is missing or empty"""


class SPFRecordNotFound(SPFError):
    """Raised when an SPF record could not be found"""

    def __init__(self, error: Union[Exception, str], domain: str):
        if isinstance(error, dns.exception.Timeout):
            error.kwargs["timeout"] = round(error.kwargs["timeout"], 1)
        self.error = error
        self.domain = domain
        SPFError.__init__(self, str(error))

    def __str__(self):
        return str(self.error)


class SPFSyntaxError(SPFError):
    """Raised when an SPF syntax error is found"""


class _SPFGrammar(pyleri.Grammar):
    """Defines Pyleri grammar for SPF records"""

    version_tag = pyleri.Regex(SPF_VERSION_TAG_REGEX_STRING)
    term = pyleri.Regex(SPF_TERM_REGEX_STRING, re.IGNORECASE)

    START = pyleri.Sequence(version_tag, pyleri.Repeat(term))


class Mechanism(TypedDict):
    qualifier: str
    kind: str
    argument: Optional[str]
    cidr: str


class SPFQueryResults(TypedDict):
    record: str
    warnings: list[str]


class SPFRecordCache:
    """
    SPF records fetched during a single run, keyed by the domain exactly as
    it was looked up.

    Only successful lookups are stored. Entries never expire; create a new
    cache for each top-level invocation.
    """

    def __init__(self):
        self._records: dict[str, str] = {}
        self.lookups = 0
        self.hits = 0

    def __contains__(self, domain: str) -> bool:
        return domain in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, domain: str) -> Optional[str]:
        return self._records.get(domain)

    def add(self, domain: str, record: str) -> None:
        if domain not in self._records:
            self._records[domain] = record


def parse_mechanism(term: str) -> Optional[Mechanism]:
    """
    Parses a single SPF term

    Args:
        term (str): A whitespace-free SPF term, e.g. ``~a:mail.example.com/24``

    Returns:
        dict: A ``dict`` with the following keys, or ``None`` if the term is
        not a recognized mechanism:
            - ``qualifier`` - One of ``+``, ``-``, ``?`` or ``~`` (default ``+``)
            - ``kind`` - The lowercase mechanism name
            - ``argument`` - The domain or address, or ``None``
            - ``cidr`` - Any CIDR suffix, e.g. ``/24//64``, or an empty string
    """
    match = SPF_MECHANISM_REGEX.match(term)
    if match is None:
        return None
    mechanism: Mechanism = {
        "qualifier": match.group("qualifier") or "+",
        "kind": match.group("kind").lower(),
        "argument": match.group("argument") or None,
        "cidr": match.group("cidr"),
    }
    return mechanism


def mechanism_to_text(mechanism: Mechanism) -> str:
    """Renders a parsed mechanism as an SPF term"""
    separator = "=" if mechanism["kind"] == "redirect" else ":"
    term = f"{mechanism['qualifier']}{mechanism['kind']}"
    if mechanism["argument"]:
        term += f"{separator}{mechanism['argument']}"
    return term + mechanism["cidr"]


def split_record(record: str) -> tuple[Optional[str], list[str]]:
    """
    Splits an SPF record into its version tag and its terms

    Quotes left over from multi-string TXT records are removed.

    Args:
        record (str): An SPF record

    Returns:
        tuple: The version tag (``None`` if the record lacks one) and a
        ``list`` of the remaining terms
    """
    record = re.sub(r'"\s+"', " ", record).replace('"', "")
    terms = record.split()
    if len(terms) > 0 and terms[0].lower() == SPF_VERSION_TAG:
        return terms[0], terms[1:]
    return None, terms


def join_record(terms: Sequence[str]) -> str:
    """Builds an SPF record from a sequence of terms"""
    terms = [term for term in terms if term.lower() != SPF_VERSION_TAG]
    return " ".join([SPF_VERSION_TAG] + terms)


def count_dns_lookups(record: str) -> int:
    """
    Counts the terms in a record that require a DNS lookup when evaluated,
    without following ``include`` or ``redirect`` targets

    Args:
        record (str): An SPF record

    Returns:
        int: The number of DNS lookups
    """
    dns_lookups = 0
    for term in split_record(record)[1]:
        mechanism = parse_mechanism(term)
        if mechanism is not None and mechanism["kind"] in DNS_LOOKUP_TERMS:
            dns_lookups += 1
    return dns_lookups


def check_record_size(record: str, domain: str) -> list[str]:
    """
    Checks if an SPF record will fit in a DNS response

    Args:
        record (str): An SPF record
        domain (str): The domain the record is published on

    Returns:
        list: A ``list`` of warnings
    """
    warnings = []
    total_bytes = len(record.encode("utf-8"))
    if total_bytes > SPF_RECORD_MAX_BYTES:
        warnings.append(
            f"The SPF record for {domain} is > {SPF_RECORD_MAX_BYTES} bytes "
            f"({total_bytes} bytes). This likely exceeds the reliable UDP "
            "response size; some verifiers may ignore or fail it "
            "(RFC 7208 § 3.4)."
        )
    elif total_bytes > SPF_RECORD_ADVISED_BYTES:
        warnings.append(
            f"The SPF record for {domain} is {total_bytes} bytes. "
            f"RFC 7208 § 3.4 recommends keeping answers under "
            f"~{SPF_RECORD_ADVISED_BYTES} bytes so the whole DNS message "
            f"fits in {SPF_RECORD_MAX_BYTES} bytes."
        )
    return warnings


def check_spf_syntax(
    record: str,
    domain: str,
    *,
    syntax_error_marker: str = SYNTAX_ERROR_MARKER,
) -> None:
    """
    Checks the syntax of an SPF record

    Args:
        record (str): An SPF record
        domain (str): The domain that the SPF record belongs to
        syntax_error_marker (str): The maker for pointing out syntax errors

    Raises:
        :exc:`spfflattener.spf.SPFSyntaxError`
    """
    record = re.sub(r'"\s+"', " ", record).replace('"', "")

    m = CONCATENATED_ALL_REGEX.search(record)
    if m:
        pos = m.start(1)
        marked_record = record[:pos] + syntax_error_marker + record[pos:]
        raise SPFSyntaxError(
            f"{domain}: Expected whitespace before 'all' at position {pos} "
            f"(marked with {syntax_error_marker}) in: {marked_record}"
        )

    parsed_record = _SPFGrammar().parse(record)
    if not parsed_record.is_valid:
        pos = parsed_record.pos
        expecting: list[str] = list(
            map(lambda x: str(x).strip('"'), list(parsed_record.expecting))
        )
        expecting_str = " or ".join(expecting)
        marked_record = record[:pos] + syntax_error_marker + record[pos:]
        raise SPFSyntaxError(
            f"{domain}: Expected {expecting_str} at position {pos} "
            f"(marked with {syntax_error_marker}) in: {marked_record}"
        )


def query_spf_record(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> SPFQueryResults:
    """
    Queries DNS for an SPF record

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        dict: A ``dict`` with the following keys:
            - ``record`` - The SPF record string
            - ``warnings`` - A ``list`` of warnings

    Raises:
        :exc:`spfflattener.spf.SPFRecordNotFound`
    """
    logging.debug(f"Checking for a SPF record on {domain}")
    warnings = []
    spf_txt_records = []
    try:
        answers = get_txt_records(
            domain,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except DNSExceptionNXDOMAIN:
        raise SPFRecordNotFound("The domain does not exist.", domain)
    except DNSException as error:
        raise SPFRecordNotFound(error, domain)

    for record in answers:
        if record == "Undecodable characters":
            warnings.append(f"A TXT record on {domain} contains undecodable characters.")
            continue
        record = record.strip('"')
        if record.startswith(SPF_VERSION_TAG):
            spf_txt_records.append(record)
    if len(spf_txt_records) == 0:
        raise SPFRecordNotFound("An SPF record does not exist.", domain)
    if len(spf_txt_records) > 1:
        warnings.append(
            f"The domain {domain} has multiple SPF TXT records; "
            "only the first one is used."
        )

    results: SPFQueryResults = {
        "record": spf_txt_records[0].replace('"', ""),
        "warnings": warnings,
    }

    return results


def get_spf_record(
    domain: str,
    *,
    cache: Optional[SPFRecordCache] = None,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    warnings: Optional[list[str]] = None,
) -> Optional[str]:
    """
    Retrieves the SPF record of a domain, using the cache when possible

    A domain without an SPF record is reported as a warning and is not
    cached, so later calls for it query DNS again.

    Args:
        domain (str): A domain name
        cache (SPFRecordCache): Records fetched earlier in this run
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        warnings (list): A list to append warnings to

    Returns:
        str: The SPF record, or ``None`` if it could not be found

    Raises:
        :exc:`spfflattener.spf.SPFArgumentError`
    """
    if not domain or not domain.strip():
        raise SPFArgumentError("A domain name is required")
    if cache is not None and domain in cache:
        logging.debug(f"Using the cached SPF record for {domain}")
        cache.hits += 1
        return cache.get(domain)

    if cache is not None:
        cache.lookups += 1
    try:
        results = query_spf_record(
            domain,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    except SPFRecordNotFound as error:
        log_warning(f"{domain}: {error}", warnings)
        return None

    for warning in results["warnings"]:
        log_warning(warning, warnings)
    record = results["record"]
    if cache is not None:
        cache.add(domain, record)

    return record
