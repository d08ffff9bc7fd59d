# -*- coding: utf-8 -*-
"""Expands include and redirect terms of SPF records"""

from __future__ import annotations

import logging
from typing import Optional
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

from spfflattener._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    DEFAULT_MAX_DEPTH,
    MICROSOFT_365_DOMAIN_SUBSTRING,
    MICROSOFT_365_INCLUDE,
)
from spfflattener.spf import (
    SPFArgumentError,
    SPFRecordCache,
    get_spf_record,
    join_record,
    parse_mechanism,
    split_record,
)
from spfflattener.utils import log_warning

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


def _expansion_target(term: str) -> Optional[str]:
    """Returns the domain an include or redirect term points to, if it can be
    expanded"""
    mechanism = parse_mechanism(term)
    if mechanism is None or mechanism["kind"] not in ("include", "redirect"):
        return None
    if mechanism["qualifier"] != "+" or not mechanism["argument"]:
        return None
    # Macros are only known at evaluation time
    if "%" in mechanism["argument"]:
        return None
    return mechanism["argument"]


def has_expandable_terms(record: str) -> bool:
    """
    Checks if a record still contains include or redirect terms that
    another expansion round would change

    Args:
        record (str): An SPF record

    Returns:
        bool: ``True`` if more expansion is possible
    """
    for term in split_record(record)[1]:
        if term.lower() == MICROSOFT_365_INCLUDE:
            continue
        if _expansion_target(term) is not None:
            return True
    return False


def _expand_terms(
    record: str,
    *,
    cache: SPFRecordCache,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    warnings: Optional[list[str]] = None,
) -> str:
    """Replaces every include and redirect term once"""
    expanded_terms = []
    for term in split_record(record)[1]:
        domain = _expansion_target(term)
        if domain is None:
            expanded_terms.append(term)
            continue
        if MICROSOFT_365_DOMAIN_SUBSTRING in domain.lower():
            expanded_terms.append(MICROSOFT_365_INCLUDE)
            continue
        included_record = get_spf_record(
            domain,
            cache=cache,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            warnings=warnings,
        )
        if included_record is None:
            log_warning(
                f"{domain}: Removed {term} because it could not be resolved",
                warnings,
            )
            continue
        expanded_terms += split_record(included_record)[1]

    return join_record(expanded_terms)


def expand_spf_record(
    record: str,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    cache: Optional[SPFRecordCache] = None,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    warnings: Optional[list[str]] = None,
) -> str:
    """
    Expands ``include`` and ``redirect`` terms by substituting the terms of
    the SPF records they point to.

    Each round replaces every expandable term in the record at once. Rounds
    repeat until no expandable terms remain, or until ``max_depth`` rounds
    beyond the first have run, in which case the record is returned with
    the remaining ``include``/``redirect`` terms as they are.

    ``include``/``redirect`` terms pointing to a ``protection.outlook.com``
    domain are replaced with ``include:spf.protection.outlook.com`` without
    any DNS lookup. Terms that point to a domain without an SPF record are
    removed with a warning.

    Only unqualified (or ``+``) terms are expanded or rewritten; terms such
    as ``-include:x.protection.outlook.com`` are kept as they are.

    Args:
        record (str): An SPF record
        max_depth (int): The maximum number of additional expansion rounds
        cache (SPFRecordCache): Records fetched earlier in this run
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        warnings (list): A list to append warnings to

    Returns:
        str: The expanded SPF record

    Raises:
        :exc:`spfflattener.spf.SPFArgumentError`
    """
    if not record or not record.strip():
        raise SPFArgumentError("An SPF record is required")
    if isinstance(max_depth, bool) or not isinstance(max_depth, int) or max_depth < 0:
        raise SPFArgumentError(f"Invalid maximum depth: {max_depth}")
    if cache is None:
        cache = SPFRecordCache()

    depth = 0
    while True:
        logging.debug(f"Expansion round {depth}: {record}")
        record = _expand_terms(
            record,
            cache=cache,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            warnings=warnings,
        )
        if not has_expandable_terms(record):
            return record
        if depth >= max_depth:
            logging.debug(
                f"Reached the maximum expansion depth of {max_depth}; "
                "returning the record as it is"
            )
            return record
        depth += 1
