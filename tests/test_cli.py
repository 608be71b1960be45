"""Tests for the command-line launcher."""

import json

from ct_watch.certificates import decode_certificate
from ct_watch.cli import build_parser, main, print_match
from ct_watch.config import DEFAULT_POLL_INTERVAL
from ct_watch.models import EntryType, MatchResult

from tests.helpers import make_cert


def test_parser_defaults_and_repeatable_filters():
    args = build_parser().parse_args(["-r", "brand.json", "-i", "google", "-i", "cloudflare"])
    assert args.rules == "brand.json"
    assert args.include == ["google", "cloudflare"]
    assert args.exclude is None
    assert args.poll_interval == DEFAULT_POLL_INTERVAL
    assert not args.match_san


def test_invalid_rules_exit_before_monitoring(tmp_path):
    rules = tmp_path / "rules.json"
    rules.write_text(json.dumps({"broken": "(oops"}))
    assert main(["--rules", str(rules), "-q"]) == 2


def test_print_match_writes_one_json_line(capsys):
    result = MatchResult(
        category="acme",
        certificate=decode_certificate(make_cert("acme.example.com")),
        log_url="https://log.example/",
        index=1,
        timestamp=2,
        entry_type=EntryType.X509_ENTRY,
    )
    print_match(result)
    line = capsys.readouterr().out.strip()
    assert json.loads(line)["common_name"] == "acme.example.com"


def test_undecodable_rules_file_exits_cleanly(tmp_path):
    rules = tmp_path / "rules.json"
    rules.write_bytes(b'{"a": "\xff\xfe"}')
    assert main(["--rules", str(rules), "-q"]) == 2
