import secrets
import string

import pytest

from attendance_service.services.tokens import TOKEN_ALPHABET, TokenIssuer


@pytest.fixture
def issuer():
    return TokenIssuer("unit-test-secret")


def test_issue_returns_alphanumeric_token_and_distinct_hash(issuer):
    issued = issuer.issue(10)

    assert len(issued.plaintext) == 10
    assert set(issued.plaintext) <= set(TOKEN_ALPHABET)
    assert issued.token_hash != issued.plaintext
    assert issued.plaintext not in issued.token_hash
    assert issuer.verify(issued.plaintext, issued.token_hash) is True


def test_verify_rejects_random_mismatches(issuer):
    issued = issuer.issue(10)
    alphabet = string.ascii_letters + string.digits
    false_positives = 0
    for _ in range(1000):
        candidate = "".join(secrets.choice(alphabet) for _ in range(10))
        if candidate == issued.plaintext:
            continue
        if issuer.verify(candidate, issued.token_hash):
            false_positives += 1
    assert false_positives == 0


def test_verify_is_exact_apart_from_surrounding_whitespace(issuer):
    issued = issuer.issue(8)

    assert issuer.verify(f"  {issued.plaintext}\n", issued.token_hash) is True
    assert issuer.verify("abc123", issuer.hash("ABC123")) is False
    assert issuer.verify(issued.plaintext[:-1], issued.token_hash) is False
    assert issuer.verify("", issued.token_hash) is False
    assert issuer.verify(None, issued.token_hash) is False
    assert issuer.verify(issued.plaintext, None) is False


def test_hash_depends_on_the_secret(issuer):
    issued = issuer.issue()
    other = TokenIssuer("another-secret")

    assert other.verify(issued.plaintext, issued.token_hash) is False


def test_tokens_are_unique_enough(issuer):
    tokens = {issuer.issue().plaintext for _ in range(200)}
    assert len(tokens) == 200


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        TokenIssuer("")
    with pytest.raises(ValueError):
        TokenIssuer("secret").issue(0)
