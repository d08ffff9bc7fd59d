# -*- coding: utf-8 -*-
"""Flattens a and mx terms of SPF records into ip4 and ip6 terms"""

from __future__ import annotations

import logging
from typing import Optional
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver
from expiringdict import ExpiringDict

from spfflattener._constants import DEFAULT_DNS_TIMEOUT, DEFAULT_DNS_TIMEOUT_RETRIES
from spfflattener.spf import (
    Mechanism,
    SPFArgumentError,
    join_record,
    mechanism_to_text,
    parse_mechanism,
    split_record,
)
from spfflattener.utils import (
    DNSException,
    get_a_records,
    get_aaaa_records,
    get_mx_records,
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


def _split_cidr(cidr: str) -> tuple[str, str]:
    """Splits a dual-cidr-length into its IPv4 and IPv6 prefix lengths"""
    if "//" in cidr:
        ip4_cidr, ip6_cidr = cidr.split("//", 1)
        return ip4_cidr, f"/{ip6_cidr}"
    return cidr, ""


def _address_terms(
    hostname: str,
    mechanism: Mechanism,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    cache: Optional[ExpiringDict] = None,
    warnings: Optional[list[str]] = None,
) -> list[str]:
    """Resolves a hostname into ip4 and ip6 terms that keep the qualifier
    of the mechanism"""
    ip4_cidr, ip6_cidr = _split_cidr(mechanism["cidr"])
    lookups = [
        ("A", get_a_records, "ip4", ip4_cidr),
        ("AAAA", get_aaaa_records, "ip6", ip6_cidr),
    ]
    terms = []
    for record_type, get_records, kind, cidr in lookups:
        try:
            addresses = get_records(
                hostname,
                nameservers=nameservers,
                resolver=resolver,
                timeout=timeout,
                timeout_retries=timeout_retries,
                cache=cache,
            )
        except DNSException as error:
            log_warning(
                f"{hostname}: Failed to get {record_type} records: {error}",
                warnings,
            )
            continue
        if len(addresses) == 0:
            log_warning(
                f"{hostname}: The domain does not have any {record_type} records.",
                warnings,
            )
            continue
        for address in addresses:
            address_mechanism: Mechanism = {
                "qualifier": mechanism["qualifier"],
                "kind": kind,
                "argument": address,
                "cidr": cidr,
            }
            terms.append(mechanism_to_text(address_mechanism))
    return terms


def _mx_terms(
    domain: str,
    mechanism: Mechanism,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    cache: Optional[ExpiringDict] = None,
    warnings: Optional[list[str]] = None,
) -> list[str]:
    try:
        hosts = get_mx_records(
            domain,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            cache=cache,
        )
    except DNSException as error:
        log_warning(f"{domain}: Failed to get MX records: {error}", warnings)
        return []
    if len(hosts) == 0:
        log_warning(f"{domain}: The domain does not have any MX records.", warnings)
        return []

    terms = []
    for host in hosts:
        terms += _address_terms(
            host["hostname"],
            mechanism,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            cache=cache,
            warnings=warnings,
        )
    return terms


def flatten_spf_record(
    record: str,
    base_domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    cache: Optional[ExpiringDict] = None,
    warnings: Optional[list[str]] = None,
) -> str:
    """
    Replaces ``a`` and ``mx`` mechanisms with the ``ip4`` and ``ip6``
    addresses they currently resolve to

    Every address becomes its own term with the qualifier of the original
    mechanism, in place of that mechanism. ``ip4``, ``ip6``, ``exists``,
    ``ptr``, ``all`` and unrecognized terms are kept as they are. Lookups
    that fail are reported as warnings and contribute no terms.

    Args:
        record (str): An expanded SPF record
        base_domain (str): The domain used by ``a`` and ``mx`` mechanisms
                           without a domain of their own
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        cache (ExpiringDict): Cache storage for A, AAAA and MX answers
        warnings (list): A list to append warnings to

    Returns:
        str: The flattened SPF record

    Raises:
        :exc:`spfflattener.spf.SPFArgumentError`
    """
    if not record or not record.strip():
        raise SPFArgumentError("An SPF record is required")
    if not base_domain or not base_domain.strip():
        raise SPFArgumentError("A base domain is required")

    logging.debug(f"Flattening the SPF record for {base_domain}: {record}")
    flattened_terms = []
    for term in split_record(record)[1]:
        mechanism = parse_mechanism(term)
        if mechanism is None or mechanism["kind"] not in ("a", "mx"):
            flattened_terms.append(term)
            continue
        domain = mechanism["argument"] or base_domain
        if "%" in domain:
            logging.debug(f"Keeping {term} because it uses macros")
            flattened_terms.append(term)
            continue
        if mechanism["kind"] == "a":
            get_terms = _address_terms
        else:
            get_terms = _mx_terms
        flattened_terms += get_terms(
            domain,
            mechanism,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            cache=cache,
            warnings=warnings,
        )

    return join_record(flattened_terms)
