"""Unit tests for password hashing and shared-secret checks."""

from dnsguard.security import hash_password, keys_match, verify_password


class TestPasswords:
    def test_hash_and_verify(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_long_passwords_are_not_truncated(self):
        base = "x" * 72
        hashed = hash_password(base + "a")
        assert verify_password(base + "a", hashed)
        assert not verify_password(base + "b", hashed)

    def test_garbage_hash_does_not_raise(self):
        assert not verify_password("pw", "not-a-bcrypt-hash")


class TestKeysMatch:
    def test_equal_keys(self):
        assert keys_match("s3cret", "s3cret")

    def test_different_keys(self):
        assert not keys_match("s3cret", "other")

    def test_unset_secret_never_matches(self):
        assert not keys_match(None, None)
        assert not keys_match("", "")
        assert not keys_match("anything", None)
