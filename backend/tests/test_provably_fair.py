from __future__ import annotations

import hashlib

from app.services import provably_fair


def test_commitment_round_trip():
    secret = provably_fair.generate_secret()
    digest = provably_fair.commitment_hash("yes", secret, 42)
    assert provably_fair.verify(digest, "yes", secret, 42)


def test_commitment_matches_published_formula():
    digest = provably_fair.commitment_hash("refunded", "abc", 7)
    assert digest == hashlib.sha256(b"refunded:abc:7").hexdigest()


def test_any_mutation_breaks_verification():
    secret = provably_fair.generate_secret()
    digest = provably_fair.commitment_hash("yes", secret, 42)
    assert not provably_fair.verify(digest, "no", secret, 42)
    assert not provably_fair.verify(digest, "yes", secret + "0", 42)
    assert not provably_fair.verify(digest, "yes", secret, 43)
    assert not provably_fair.verify(digest, "unknown", secret, 42)


def test_create_commitment_self_verifies():
    artifact = provably_fair.create_commitment(5, "no")
    assert artifact.verified
    assert artifact.outcome == "no"
    assert len(artifact.secret) == 64
    assert provably_fair.verify(artifact.commitment_hash, "no", artifact.secret, 5)


def test_verify_rejects_non_ascii_input_without_raising():
    secret = provably_fair.generate_secret()
    assert provably_fair.verify("\u00e9" * 64, "yes", secret, 1) is False
    digest = provably_fair.commitment_hash("yes", "s\u00e9cret", 1)
    assert provably_fair.verify(digest, "yes", "s\u00e9cret", 1) is True


def test_secrets_are_fresh():
    assert provably_fair.generate_secret() != provably_fair.generate_secret()


def test_verify_commitment_cli_checks_supplied_values():
    from scripts.verify_commitment import check_commitment, parse_args

    artifact = provably_fair.create_commitment(11, "yes")
    good = parse_args(
        ["--market-id", "11", "--hash", artifact.commitment_hash, "--outcome", "yes", "--secret", artifact.secret]
    )
    bad = parse_args(
        ["--market-id", "12", "--hash", artifact.commitment_hash, "--outcome", "yes", "--secret", artifact.secret]
    )
    missing = parse_args(["--market-id", "11", "--outcome", "yes"])

    assert check_commitment(good)
    assert not check_commitment(bad)
    assert not check_commitment(missing)
