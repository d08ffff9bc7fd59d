#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Expands and flattens the SPF record of a domain"""

from __future__ import annotations

import sys
from argparse import ArgumentParser

import logging

from spfflattener import SPFArgumentError, __version__, flatten_domain
from spfflattener._constants import (
    DEFAULT_DNS_SERVER,
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    DEFAULT_MAX_DEPTH,
)

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


def _main():
    """Called when the module in executed"""
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument("domain", help="the domain to look up")
    arg_parser.add_argument(
        "-n",
        "--nameserver",
        nargs="+",
        default=[DEFAULT_DNS_SERVER],
        help=f"nameservers to query (default {DEFAULT_DNS_SERVER})",
    )
    arg_parser.add_argument(
        "-m",
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help="maximum number of additional include/redirect expansion "
        f"rounds (default {DEFAULT_MAX_DEPTH})",
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for an answer from DNS "
        f"(default {DEFAULT_DNS_TIMEOUT})",
        type=float,
        default=DEFAULT_DNS_TIMEOUT,
    )
    arg_parser.add_argument(
        "--timeout-retries",
        help="number of times to reattempt a query after a timeout "
        f"(default {DEFAULT_DNS_TIMEOUT_RETRIES})",
        type=int,
        default=DEFAULT_DNS_TIMEOUT_RETRIES,
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )

    args = arg_parser.parse_args()

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")

    try:
        results = flatten_domain(
            args.domain,
            max_depth=args.max_depth,
            nameservers=args.nameserver,
            timeout=args.timeout,
            timeout_retries=args.timeout_retries,
        )
    except SPFArgumentError as error:
        logging.error(str(error))
        sys.exit(1)

    if "error" in results:
        logging.error(results["error"])
        sys.exit(1)

    dns_lookups = results["dns_lookups"]
    print(f"Original SPF record: {results['record']}")
    print(f"Expanded SPF record: {results['expanded']}")
    print(f"Flattened SPF record: {results['flattened']}")
    print(
        f"DNS lookups: {dns_lookups['original']} before flattening, "
        f"{dns_lookups['flattened']} after"
    )


if __name__ == "__main__":
    _main()
