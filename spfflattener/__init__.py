# -*- coding: utf-8 -*-

"""Expands and flattens SPF records"""

from __future__ import annotations

import logging
from typing import Optional, TypedDict
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

import spfflattener._constants
from spfflattener._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    DEFAULT_MAX_DEPTH,
    MAX_DNS_LOOKUPS,
)
from spfflattener.expand import expand_spf_record
from spfflattener.flatten import flatten_spf_record
from spfflattener.spf import (
    SPFArgumentError,
    SPFError,
    SPFRecordCache,
    SPFRecordNotFound,
    SPFSyntaxError,
    check_record_size,
    check_spf_syntax,
    count_dns_lookups,
    get_spf_record,
    parse_mechanism,
)
from spfflattener.utils import DNSException, log_warning, new_dns_cache

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""


__version__ = spfflattener._constants.__version__

__all__ = [
    "__version__",
    "DNSException",
    "SPFArgumentError",
    "SPFError",
    "SPFFlattenResults",
    "SPFRecordCache",
    "SPFRecordNotFound",
    "SPFSyntaxError",
    "count_dns_lookups",
    "expand_spf_record",
    "flatten_domain",
    "flatten_spf_record",
    "get_spf_record",
    "parse_mechanism",
]


class DNSLookupCounts(TypedDict):
    original: Optional[int]
    flattened: Optional[int]


class SPFFlattenResults(TypedDict, total=False):
    domain: str
    record: Optional[str]
    expanded: Optional[str]
    flattened: Optional[str]
    dns_lookups: DNSLookupCounts
    valid: bool
    warnings: list[str]
    error: str


def flatten_domain(
    domain: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> SPFFlattenResults:
    """
    Retrieves the SPF record of a domain, then expands and flattens it

    Args:
        domain (str): A domain name
        max_depth (int): The maximum number of additional expansion rounds
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout

    Returns:
        dict: A ``dict`` with the following keys:
            - ``domain`` - The domain name
            - ``record`` - The SPF record as published
            - ``expanded`` - The record with ``include``/``redirect`` expanded
            - ``flattened`` - The expanded record with ``a``/``mx`` flattened
            - ``dns_lookups`` - DNS lookups needed by the ``original`` and
              ``flattened`` records
            - ``valid`` - ``False`` if the domain has no SPF record
            - ``warnings`` - A ``list`` of warnings

        If the domain has no SPF record, the dictionary also has an ``error``
        key.

    Raises:
        :exc:`spfflattener.spf.SPFArgumentError`
    """
    if not domain or not domain.strip():
        raise SPFArgumentError("A domain name is required")
    domain = domain.strip()
    logging.debug(f"Flattening the SPF record of {domain}")
    warnings = []
    results: SPFFlattenResults = {
        "domain": domain,
        "record": None,
        "expanded": None,
        "flattened": None,
        "dns_lookups": {"original": None, "flattened": None},
        "valid": True,
        "warnings": warnings,
    }
    options = dict(
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
    )

    record_cache = SPFRecordCache()
    record = get_spf_record(domain, cache=record_cache, warnings=warnings, **options)
    if record is None:
        results["valid"] = False
        results["error"] = f"An SPF record for {domain} could not be found."
        return results
    results["record"] = record
    results["dns_lookups"]["original"] = count_dns_lookups(record)

    expanded = expand_spf_record(
        record,
        max_depth=max_depth,
        cache=record_cache,
        warnings=warnings,
        **options,
    )
    results["expanded"] = expanded

    flattened = flatten_spf_record(
        expanded,
        domain,
        cache=new_dns_cache(),
        warnings=warnings,
        **options,
    )
    results["flattened"] = flattened

    dns_lookups = count_dns_lookups(flattened)
    results["dns_lookups"]["flattened"] = dns_lookups
    if dns_lookups > MAX_DNS_LOOKUPS:
        log_warning(
            f"The flattened SPF record for {domain} still requires "
            f"{dns_lookups}/{MAX_DNS_LOOKUPS} maximum DNS lookups "
            "(RFC 7208 § 4.6.4)",
            warnings,
        )
    for warning in check_record_size(flattened, domain):
        log_warning(warning, warnings)
    try:
        check_spf_syntax(flattened, domain)
    except SPFSyntaxError as error:
        log_warning(str(error), warnings)

    logging.debug(
        f"Fetched {record_cache.lookups} SPF records, "
        f"{record_cache.hits} cache hits"
    )
    return results
