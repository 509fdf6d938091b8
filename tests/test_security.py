"""
Tests for contact encryption and sign-in checks.
"""

import pytest
from cryptography.fernet import Fernet, InvalidToken

from errors import ValidationError
from security import (
    build_fernet,
    decrypt_contact,
    encrypt_contact,
    is_institutional_email,
    normalize_phone_number,
    whatsapp_link,
)


class TestPhoneNumbers:

    def test_normalize_strips_formatting(self):
        assert normalize_phone_number("+91 (987) 654-3210") == "+919876543210"

    @pytest.mark.parametrize("phone", ["", "   ", "12345", "+1234567890123456", None])
    def test_invalid_numbers_are_rejected(self, phone):
        with pytest.raises(ValidationError) as exc_info:
            normalize_phone_number(phone)
        assert exc_info.value.field == "whatsapp_number"

    def test_whatsapp_link_uses_digits_only(self):
        assert whatsapp_link("+919876543210") == "https://wa.me/919876543210"
        assert whatsapp_link(None) is None


class TestContactEncryption:

    def test_ciphertext_does_not_contain_number(self):
        token = encrypt_contact("+919876543210")

        assert "9876543210" not in token
        assert decrypt_contact(token) == "+919876543210"

    def test_tampered_token_returns_none(self, caplog):
        token = encrypt_contact("+919876543210")

        assert decrypt_contact(token[:-4] + "AAAA") is None
        assert "9876543210" not in caplog.text

    def test_empty_token(self):
        assert decrypt_contact(None) is None


class TestBuildFernet:

    def test_generated_key_is_used_as_is(self):
        key = Fernet.generate_key()
        token = Fernet(key).encrypt(b"+919876543210")

        assert build_fernet(key.decode("ascii")).decrypt(token) == b"+919876543210"

    def test_passphrase_is_derived_with_salt(self):
        token = build_fernet("correct horse battery", salt="salt-a").encrypt(b"+919876543210")

        assert build_fernet("correct horse battery", salt="salt-a").decrypt(token) == b"+919876543210"
        with pytest.raises(InvalidToken):
            build_fernet("correct horse battery", salt="salt-b").decrypt(token)


class TestInstitutionalEmail:

    @pytest.mark.parametrize(
        "email, allowed",
        [
            ("asha@student.iul.ac.in", True),
            ("Asha@Student.IUL.ac.in", True),
            ("asha@gmail.com", False),
            ("asha@evilstudent.iul.ac.in", False),
            ("", False),
        ],
    )
    def test_domain_check(self, email, allowed):
        assert is_institutional_email(email, domain="student.iul.ac.in") is allowed
