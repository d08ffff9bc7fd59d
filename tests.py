#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import io
import sys
import unittest
from contextlib import redirect_stdout
from unittest import mock

import dns.resolver

import spfflattener
import spfflattener._cli
import spfflattener.expand
import spfflattener.flatten
import spfflattener.spf
import spfflattener.utils


class _TXTAnswer:
    def __init__(self, text):
        data = text.encode()
        self.strings = [data[i : i + 255] for i in range(0, len(data), 255)]


class _Answer:
    def __init__(self, text):
        self.text = text

    def to_text(self):
        return self.text


class FakeResolver:
    """Answers DNS queries from a dictionary of ``(name, type)`` keys and
    records every query"""

    def __init__(self, records):
        self.records = records
        self.queries = []

    def resolve(self, name, rdtype, lifetime=None):
        self.queries.append((name, rdtype))
        key = (name, rdtype)
        if key not in self.records:
            if any(n == name for n, _ in self.records):
                raise dns.resolver.NoAnswer()
            raise dns.resolver.NXDOMAIN()
        answers = self.records[key]
        if isinstance(answers, Exception):
            raise answers
        if rdtype == "TXT":
            return [_TXTAnswer(answer) for answer in answers]
        return [_Answer(answer) for answer in answers]

    def count(self, name, rdtype):
        return self.queries.count((name, rdtype))


class Test(unittest.TestCase):
    def testParseMechanism(self):
        """Terms are parsed into a qualifier, kind, argument and CIDR suffix"""
        self.assertEqual(
            spfflattener.spf.parse_mechanism("a"),
            {"qualifier": "+", "kind": "a", "argument": None, "cidr": ""},
        )
        self.assertEqual(
            spfflattener.spf.parse_mechanism("~MX:mail.example.com/24//64"),
            {
                "qualifier": "~",
                "kind": "mx",
                "argument": "mail.example.com",
                "cidr": "/24//64",
            },
        )
        self.assertEqual(
            spfflattener.spf.parse_mechanism("ip6:2001:db8::/32"),
            {"qualifier": "+", "kind": "ip6", "argument": "2001:db8::", "cidr": "/32"},
        )
        redirect = spfflattener.spf.parse_mechanism("redirect=_spf.example.com")
        self.assertEqual(redirect["kind"], "redirect")
        self.assertEqual(redirect["argument"], "_spf.example.com")
        self.assertEqual(spfflattener.spf.parse_mechanism("-all")["qualifier"], "-")

    def testParseUnknownTerms(self):
        """Modifiers and vendor junk are not mechanisms"""
        for term in [
            "exp=explain.example.com",
            "MS=ms12345",
            "allow",
            "v=spf1",
            "a=host.example.com",
            "mx=host.example.com",
            "include=_spf.example.com",
            "redirect:_spf.example.com",
        ]:
            self.assertIsNone(spfflattener.spf.parse_mechanism(term), term)

    def testMechanismToText(self):
        mechanism = spfflattener.spf.parse_mechanism("?a:host.example.com/24")
        self.assertEqual(
            spfflattener.spf.mechanism_to_text(mechanism), "?a:host.example.com/24"
        )
        mechanism = spfflattener.spf.parse_mechanism("redirect=_spf.example.com")
        self.assertEqual(
            spfflattener.spf.mechanism_to_text(mechanism), "+redirect=_spf.example.com"
        )

    def testSplitAndJoinRecord(self):
        """Split TXT strings are joined and the version tag appears once"""
        version, terms = spfflattener.spf.split_record(
            '"v=spf1 ip4:192.0.2.1 " "include:_spf.example.com -all"'
        )
        self.assertEqual(version, "v=spf1")
        self.assertEqual(terms, ["ip4:192.0.2.1", "include:_spf.example.com", "-all"])
        self.assertEqual(
            spfflattener.spf.join_record(["v=spf1", "ip4:192.0.2.1", "-all"]),
            "v=spf1 ip4:192.0.2.1 -all",
        )

    def testFetchCacheHit(self):
        """A second fetch of the same domain does not query DNS again"""
        resolver = FakeResolver(
            {("example.com", "TXT"): ["google-site-verification=abc", "v=spf1 -all"]}
        )
        cache = spfflattener.spf.SPFRecordCache()
        for _ in range(2):
            record = spfflattener.spf.get_spf_record(
                "example.com", cache=cache, resolver=resolver
            )
            self.assertEqual(record, "v=spf1 -all")
        self.assertEqual(resolver.count("example.com", "TXT"), 1)
        self.assertEqual(cache.lookups, 1)
        self.assertEqual(cache.hits, 1)
        self.assertIn("example.com", cache)

    def testFetchMissingRecordIsNotCached(self):
        """Domains without an SPF record are queried again on every fetch"""
        resolver = FakeResolver({("example.com", "TXT"): ["not an spf record"]})
        cache = spfflattener.spf.SPFRecordCache()
        warnings = []
        for _ in range(2):
            record = spfflattener.spf.get_spf_record(
                "example.com", cache=cache, resolver=resolver, warnings=warnings
            )
            self.assertIsNone(record)
        self.assertEqual(resolver.count("example.com", "TXT"), 2)
        self.assertEqual(len(cache), 0)
        self.assertEqual(
            warnings, ["example.com: An SPF record does not exist."] * 2
        )

    def testFetchNonexistentDomain(self):
        resolver = FakeResolver({})
        warnings = []
        record = spfflattener.spf.get_spf_record(
            "example.invalid", resolver=resolver, warnings=warnings
        )
        self.assertIsNone(record)
        self.assertEqual(warnings, ["example.invalid: The domain does not exist."])

    def testFetchResolutionFailure(self):
        """A failing DNS server is reported like a missing record"""
        resolver = FakeResolver(
            {("example.com", "TXT"): dns.resolver.NoNameservers()}
        )
        warnings = []
        record = spfflattener.spf.get_spf_record(
            "example.com", resolver=resolver, warnings=warnings
        )
        self.assertIsNone(record)
        self.assertEqual(len(warnings), 1)

    def testFetchMultipleRecords(self):
        """The first of multiple SPF records is used, with a warning"""
        resolver = FakeResolver(
            {("example.com", "TXT"): ["v=spf1 ip4:192.0.2.1 -all", "v=spf1 -all"]}
        )
        warnings = []
        record = spfflattener.spf.get_spf_record(
            "example.com", resolver=resolver, warnings=warnings
        )
        self.assertEqual(record, "v=spf1 ip4:192.0.2.1 -all")
        self.assertEqual(len(warnings), 1)

    def testFetchRequiresDomain(self):
        resolver = FakeResolver({})
        for domain in ["", "  ", None]:
            self.assertRaises(
                spfflattener.spf.SPFArgumentError,
                spfflattener.spf.get_spf_record,
                domain,
                resolver=resolver,
            )
        self.assertEqual(resolver.queries, [])

    def testExpandInclude(self):
        """Included terms replace the include term in place"""
        resolver = FakeResolver(
            {("spf.example.net", "TXT"): ["v=spf1 ip4:198.51.100.0/24 -all"]}
        )
        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 include:spf.example.net ~all", resolver=resolver
        )
        self.assertEqual(expanded, "v=spf1 ip4:198.51.100.0/24 -all ~all")

    def testExpandRedirect(self):
        resolver = FakeResolver(
            {("_spf.example.com", "TXT"): ["v=spf1 ip4:192.0.2.0/24 mx -all"]}
        )
        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 redirect=_spf.example.com", resolver=resolver
        )
        self.assertEqual(expanded, "v=spf1 ip4:192.0.2.0/24 mx -all")

    def testExpandMissingInclude(self):
        """Includes of domains without an SPF record are removed with a warning"""
        resolver = FakeResolver({})
        warnings = []
        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 ip4:192.0.2.1 include:missing.example.com -all",
            resolver=resolver,
            warnings=warnings,
        )
        self.assertEqual(expanded, "v=spf1 ip4:192.0.2.1 -all")
        self.assertTrue(any("include:missing.example.com" in w for w in warnings))

    def testExpandMicrosoft365(self):
        """Microsoft 365 includes are replaced without any DNS lookups"""
        resolver = FakeResolver({})
        for term in [
            "include:spf.protection.outlook.com",
            "include:eurprd01.prod.protection.outlook.com",
            "redirect=nam.protection.outlook.com",
        ]:
            expanded = spfflattener.expand.expand_spf_record(
                f"v=spf1 {term} -all", resolver=resolver
            )
            self.assertEqual(
                expanded, "v=spf1 include:spf.protection.outlook.com -all"
            )
        self.assertEqual(resolver.queries, [])

    def testExpandDepthLimit(self):
        """Expansion stops after max_depth additional rounds"""
        records = {}
        for i in range(1, 10):
            records[(f"d{i}.example.com", "TXT")] = [
                f"v=spf1 ip4:192.0.2.{i} include:d{i + 1}.example.com"
            ]
        records[("d10.example.com", "TXT")] = ["v=spf1 ip4:192.0.2.10"]
        resolver = FakeResolver(records)

        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 include:d1.example.com -all", max_depth=2, resolver=resolver
        )
        self.assertEqual(
            expanded,
            "v=spf1 ip4:192.0.2.1 ip4:192.0.2.2 ip4:192.0.2.3 "
            "include:d4.example.com -all",
        )

        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 include:d1.example.com -all", max_depth=0, resolver=resolver
        )
        self.assertEqual(expanded, "v=spf1 ip4:192.0.2.1 include:d2.example.com -all")

        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 include:d1.example.com -all", max_depth=9, resolver=resolver
        )
        self.assertNotIn("include:", expanded)
        self.assertIn("ip4:192.0.2.10", expanded)

    def testExpandWholeRoundAtOnce(self):
        """Every include present in a round is expanded in that round"""
        resolver = FakeResolver(
            {
                ("a.example.com", "TXT"): ["v=spf1 ip4:192.0.2.1"],
                ("b.example.com", "TXT"): ["v=spf1 ip4:192.0.2.2"],
                ("c.example.com", "TXT"): ["v=spf1 ip6:2001:db8::1"],
            }
        )
        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 include:a.example.com include:b.example.com "
            "include:c.example.com ~all",
            max_depth=0,
            resolver=resolver,
        )
        self.assertEqual(
            expanded, "v=spf1 ip4:192.0.2.1 ip4:192.0.2.2 ip6:2001:db8::1 ~all"
        )

    def testExpandIncludeLoop(self):
        """Include loops end at the depth limit and reuse cached records"""
        resolver = FakeResolver(
            {
                ("a.example.com", "TXT"): ["v=spf1 include:b.example.com"],
                ("b.example.com", "TXT"): ["v=spf1 include:a.example.com"],
            }
        )
        expanded = spfflattener.expand.expand_spf_record(
            "v=spf1 include:a.example.com -all", max_depth=5, resolver=resolver
        )
        self.assertEqual(expanded, "v=spf1 include:a.example.com -all")
        self.assertEqual(resolver.count("a.example.com", "TXT"), 1)
        self.assertEqual(resolver.count("b.example.com", "TXT"), 1)

    def testExpandKeepsQualifiedAndMacroIncludes(self):
        resolver = FakeResolver({})
        record = "v=spf1 ~include:a.example.com include:%{ir}.%{d}.example.com -all"
        expanded = spfflattener.expand.expand_spf_record(record, resolver=resolver)
        self.assertEqual(expanded, record)
        self.assertEqual(resolver.queries, [])

    def testExpandKeepsMalformedIncludes(self):
        """include and redirect terms with the wrong separator are not expanded"""
        resolver = FakeResolver({("x.example.com", "TXT"): ["v=spf1 ip4:192.0.2.1"]})
        record = (
            "v=spf1 include=x.example.com redirect:x.example.com "
            "include=spf.protection.outlook.com -all"
        )
        expanded = spfflattener.expand.expand_spf_record(record, resolver=resolver)
        self.assertEqual(expanded, record)
        self.assertEqual(resolver.queries, [])

    def testExpandInvalidArguments(self):
        self.assertRaises(
            spfflattener.spf.SPFArgumentError,
            spfflattener.expand.expand_spf_record,
            "",
        )
        self.assertRaises(
            spfflattener.spf.SPFArgumentError,
            spfflattener.expand.expand_spf_record,
            "v=spf1 -all",
            max_depth=-1,
        )

    def testFlattenPassthrough(self):
        """Static mechanisms are kept as they are and in order"""
        resolver = FakeResolver({})
        record = (
            "v=spf1 ip4:203.0.113.5 ip6:2001:db8::1 "
            "exists:%{i}._spf.example.com ptr:example.com all"
        )
        flattened = spfflattener.flatten.flatten_spf_record(
            record, "example.com", resolver=resolver
        )
        self.assertEqual(flattened, record)
        self.assertEqual(resolver.queries, [])

    def testFlattenKeepsMalformedMechanisms(self):
        """a and mx terms with an = separator are modifiers, not mechanisms"""
        resolver = FakeResolver(
            {
                ("evil.example.com", "A"): ["203.0.113.9"],
                ("evil.example.com", "MX"): ["10 evil.example.com."],
            }
        )
        record = "v=spf1 a=evil.example.com mx=evil.example.com -all"
        flattened = spfflattener.flatten.flatten_spf_record(
            record, "example.com", resolver=resolver
        )
        self.assertEqual(flattened, record)
        self.assertEqual(resolver.queries, [])

    def testNameserversOverride(self):
        """Queries are sent to the given nameservers"""
        with mock.patch.object(dns.resolver, "Resolver") as resolver_class:
            resolver = resolver_class.return_value
            resolver.resolve.return_value = [_Answer("192.0.2.1")]
            addresses = spfflattener.utils.get_a_records(
                "example.com", nameservers=["192.0.2.53"], timeout=1.5
            )
        self.assertEqual(addresses, ["192.0.2.1"])
        self.assertEqual(resolver.nameservers, ["192.0.2.53"])
        self.assertEqual(resolver.timeout, 1.5)
        resolver.resolve.assert_called_once_with("example.com", "A", lifetime=1.5)

    def testFlattenIsIdempotent(self):
        resolver = FakeResolver(
            {
                ("example.com", "A"): ["192.0.2.1"],
                ("example.com", "AAAA"): ["2001:db8::1"],
            }
        )
        flattened = spfflattener.flatten.flatten_spf_record(
            "v=spf1 a -all", "example.com", resolver=resolver
        )
        self.assertEqual(flattened, "v=spf1 +ip4:192.0.2.1 +ip6:2001:db8::1 -all")
        self.assertEqual(
            spfflattener.flatten.flatten_spf_record(
                flattened, "example.com", resolver=resolver
            ),
            flattened,
        )

    def testFlattenAMechanism(self):
        """The qualifier and CIDR suffix carry over to each address"""
        resolver = FakeResolver(
            {
                ("mail.example.net", "A"): ["192.0.2.1", "192.0.2.2"],
                ("mail.example.net", "AAAA"): ["2001:db8::1"],
            }
        )
        flattened = spfflattener.flatten.flatten_spf_record(
            "v=spf1 ~a:mail.example.net/24//64 -all", "example.com", resolver=resolver
        )
        self.assertEqual(
            flattened,
            "v=spf1 ~ip4:192.0.2.1/24 ~ip4:192.0.2.2/24 ~ip6:2001:db8::1/64 -all",
        )

    def testFlattenAMechanismWithoutAddresses(self):
        """An a mechanism without addresses adds no terms and one warning per
        record type"""
        resolver = FakeResolver({("example.com", "TXT"): ["v=spf1 a -all"]})
        warnings = []
        flattened = spfflattener.flatten.flatten_spf_record(
            "v=spf1 a -all", "example.com", resolver=resolver, warnings=warnings
        )
        self.assertEqual(flattened, "v=spf1 -all")
        self.assertEqual(len(warnings), 2)
        self.assertTrue(any("A records" in w for w in warnings))
        self.assertTrue(any("AAAA records" in w for w in warnings))

    def testFlattenMXMechanism(self):
        """Each MX host is flattened, and failing hosts are skipped"""
        resolver = FakeResolver(
            {
                ("example.com", "MX"): [
                    "20 mx2.example.com.",
                    "10 mx1.example.com.",
                    "30 gone.example.com.",
                ],
                ("mx1.example.com", "A"): ["192.0.2.10"],
                ("mx1.example.com", "AAAA"): ["2001:db8::10"],
                ("mx2.example.com", "A"): ["192.0.2.20"],
            }
        )
        warnings = []
        flattened = spfflattener.flatten.flatten_spf_record(
            "v=spf1 ip4:198.51.100.1 mx ?all",
            "example.com",
            resolver=resolver,
            warnings=warnings,
        )
        self.assertEqual(
            flattened,
            "v=spf1 ip4:198.51.100.1 +ip4:192.0.2.10 +ip6:2001:db8::10 "
            "+ip4:192.0.2.20 ?all",
        )
        # mx2 has no AAAA records, gone.example.com does not exist
        self.assertEqual(len(warnings), 3)

    def testFlattenMXWithoutRecords(self):
        resolver = FakeResolver({("example.org", "A"): ["192.0.2.1"]})
        warnings = []
        flattened = spfflattener.flatten.flatten_spf_record(
            "v=spf1 mx:example.org -all",
            "example.com",
            resolver=resolver,
            warnings=warnings,
        )
        self.assertEqual(flattened, "v=spf1 -all")
        self.assertEqual(
            warnings, ["example.org: The domain does not have any MX records."]
        )

    def testFlattenInvalidArguments(self):
        self.assertRaises(
            spfflattener.spf.SPFArgumentError,
            spfflattener.flatten.flatten_spf_record,
            "",
            "example.com",
        )
        self.assertRaises(
            spfflattener.spf.SPFArgumentError,
            spfflattener.flatten.flatten_spf_record,
            "v=spf1 a -all",
            "",
        )

    def testDNSAnswerCache(self):
        """Answers stored in a DNS cache are reused"""
        resolver = FakeResolver({("example.com", "A"): ["192.0.2.1"]})
        cache = spfflattener.utils.new_dns_cache()
        for _ in range(2):
            addresses = spfflattener.utils.get_a_records(
                "example.com", resolver=resolver, cache=cache
            )
            self.assertEqual(addresses, ["192.0.2.1"])
        self.assertEqual(resolver.count("example.com", "A"), 1)

    def testNullMX(self):
        resolver = FakeResolver({("example.com", "MX"): ["0 ."]})
        self.assertEqual(
            spfflattener.utils.get_mx_records("example.com", resolver=resolver), []
        )

    def testCountDNSLookups(self):
        record = (
            "v=spf1 a mx:example.com ip4:192.0.2.1 include:_spf.example.com "
            "exists:%{i}.example.com ptr redirect=example.net"
        )
        self.assertEqual(spfflattener.spf.count_dns_lookups(record), 6)
        self.assertEqual(
            spfflattener.spf.count_dns_lookups("v=spf1 ip4:192.0.2.1 -all"), 0
        )

    def testRecordSize(self):
        small = "v=spf1 -all"
        self.assertEqual(spfflattener.spf.check_record_size(small, "example.com"), [])
        large = "v=spf1 " + " ".join(f"ip4:192.0.2.{i}" for i in range(40)) + " -all"
        warnings = spfflattener.spf.check_record_size(large, "example.com")
        self.assertEqual(len(warnings), 1)
        self.assertIn("512 bytes", warnings[0])

    def testSPFSyntax(self):
        spfflattener.spf.check_spf_syntax(
            "v=spf1 +ip4:192.0.2.1 ip6:2001:db8::/32 include:_spf.example.com ~all",
            "example.com",
        )
        self.assertRaises(
            spfflattener.spf.SPFSyntaxError,
            spfflattener.spf.check_spf_syntax,
            "v=spf1 mx include: bogus.example.com ~all",
            "example.com",
        )
        self.assertRaises(
            spfflattener.spf.SPFSyntaxError,
            spfflattener.spf.check_spf_syntax,
            "v=spf1 ip4:203.0.113.7~all",
            "example.com",
        )

    def testFlattenDomain(self):
        resolver = FakeResolver(
            {
                ("example.com", "TXT"): [
                    "v=spf1 a include:_spf.example.net include:spf.protection.outlook.com ~all"
                ],
                ("example.com", "A"): ["192.0.2.1"],
                ("example.com", "AAAA"): ["2001:db8::1"],
                ("_spf.example.net", "TXT"): ["v=spf1 ip4:198.51.100.0/24 -all"],
            }
        )
        results = spfflattener.flatten_domain("example.com", resolver=resolver)
        self.assertTrue(results["valid"])
        self.assertEqual(
            results["record"],
            "v=spf1 a include:_spf.example.net include:spf.protection.outlook.com ~all",
        )
        self.assertEqual(
            results["expanded"],
            "v=spf1 a ip4:198.51.100.0/24 -all include:spf.protection.outlook.com ~all",
        )
        self.assertEqual(
            results["flattened"],
            "v=spf1 +ip4:192.0.2.1 +ip6:2001:db8::1 ip4:198.51.100.0/24 -all "
            "include:spf.protection.outlook.com ~all",
        )
        self.assertEqual(results["dns_lookups"], {"original": 3, "flattened": 1})
        self.assertEqual(resolver.count("example.com", "TXT"), 1)

    def testFlattenDomainWithoutRecord(self):
        resolver = FakeResolver({})
        results = spfflattener.flatten_domain("example.invalid", resolver=resolver)
        self.assertFalse(results["valid"])
        self.assertIn("error", results)
        self.assertIsNone(results["flattened"])

    def testCLIOutput(self):
        """The CLI prints the original, expanded, and flattened records"""
        results = {
            "domain": "example.com",
            "record": "v=spf1 include:_spf.example.com -all",
            "expanded": "v=spf1 a -all",
            "flattened": "v=spf1 +ip4:192.0.2.1 -all",
            "dns_lookups": {"original": 1, "flattened": 0},
            "valid": True,
            "warnings": [],
        }
        output = io.StringIO()
        with mock.patch.object(
            spfflattener._cli, "flatten_domain", return_value=results
        ) as flatten_domain, mock.patch.object(
            sys, "argv", ["spfflattener", "example.com", "--max-depth", "3"]
        ), redirect_stdout(output):
            spfflattener._cli._main()
        lines = output.getvalue().splitlines()
        self.assertEqual(lines[0], "Original SPF record: v=spf1 include:_spf.example.com -all")
        self.assertEqual(lines[1], "Expanded SPF record: v=spf1 a -all")
        self.assertEqual(lines[2], "Flattened SPF record: v=spf1 +ip4:192.0.2.1 -all")
        kwargs = flatten_domain.call_args.kwargs
        self.assertEqual(kwargs["max_depth"], 3)
        self.assertEqual(kwargs["nameservers"], ["8.8.8.8"])

    def testCLIMissingRecord(self):
        results = {"valid": False, "error": "An SPF record could not be found."}
        with mock.patch.object(
            spfflattener._cli, "flatten_domain", return_value=results
        ), mock.patch.object(sys, "argv", ["spfflattener", "example.invalid"]):
            with self.assertRaises(SystemExit) as context:
                spfflattener._cli._main()
        self.assertEqual(context.exception.code, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
