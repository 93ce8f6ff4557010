import pytest

from auth import Identity, IdentityVerifier, Unauthorized, bearer_token


def test_issued_token_round_trips_identity():
    verifier = IdentityVerifier("secret")
    token = verifier.issue_token("uid-123", "Sam")

    assert verifier.verify(token) == Identity(uid="uid-123", name="Sam")


def test_tampered_or_foreign_tokens_are_rejected():
    verifier = IdentityVerifier("secret")
    token = verifier.issue_token("uid-123")

    with pytest.raises(Unauthorized):
        verifier.verify(token[:-2] + "xx")
    with pytest.raises(Unauthorized):
        IdentityVerifier("other").verify(token)
    with pytest.raises(Unauthorized):
        verifier.verify(None)


def test_expired_token_is_rejected():
    verifier = IdentityVerifier("secret", max_age_secs=-1)
    token = verifier.issue_token("uid-123")

    with pytest.raises(Unauthorized):
        verifier.verify(token)


def test_token_without_subject_is_rejected():
    verifier = IdentityVerifier("secret")
    token = verifier._serializer.dumps({"name": "Nobody"})

    with pytest.raises(Unauthorized):
        verifier.verify(token)


def test_bearer_token_parsing():
    assert bearer_token("Bearer abc") == "abc"
    assert bearer_token("bearer  abc ") == "abc"
    assert bearer_token("Basic abc") is None
    assert bearer_token("Bearer ") is None
    assert bearer_token(None) is None
