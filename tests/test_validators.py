"""
Tests for field validators.
"""

import pytest
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile

from core.validators import (
    normalize_phone_number,
    validate_device_photo,
    validate_imei,
    validate_phone_number,
    validate_pincode,
)

from .factories import OTHER_VALID_IMEI, THIRD_VALID_IMEI, VALID_IMEI


class TestPhoneNumber:

    @pytest.mark.parametrize('value', ['+91 98765 43210', '+91-98765-43210', '9876543210', '(080) 4123-4567'])
    def test_valid_formats(self, value):
        validate_phone_number(value)

    @pytest.mark.parametrize('value, code', [
        ('98765abc10', 'invalid_phone_chars'),
        ('98765', 'phone_too_short'),
        ('+1234567890123456', 'phone_too_long'),
        ('9999999999', 'invalid_phone_pattern'),
    ])
    def test_invalid_formats(self, value, code):
        with pytest.raises(ValidationError) as excinfo:
            validate_phone_number(value)

        assert excinfo.value.code == code

    def test_normalize_strips_separators(self):
        assert normalize_phone_number(' +91 (98765) 432-10 ') == '+919876543210'

    def test_normalize_keeps_empty_values(self):
        assert normalize_phone_number('') == ''
        assert normalize_phone_number(None) is None


class TestImei:

    @pytest.mark.parametrize('value', [VALID_IMEI, OTHER_VALID_IMEI, THIRD_VALID_IMEI])
    def test_valid_check_digit(self, value):
        validate_imei(value)

    def test_wrong_check_digit(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_imei('490154203237519')

        assert excinfo.value.code == 'imei_checksum'

    @pytest.mark.parametrize('value', ['49015420323751', '4901542032375180', '49015420323751A'])
    def test_wrong_format(self, value):
        with pytest.raises(ValidationError) as excinfo:
            validate_imei(value)

        assert excinfo.value.code == 'imei_format'

    def test_blank_is_allowed(self):
        validate_imei('')


class TestPincode:

    def test_valid(self):
        validate_pincode('560001')

    @pytest.mark.parametrize('value', ['056001', '56000', '5600011', 'ABCDEF', ''])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_pincode(value)


class TestDevicePhoto:

    def test_accepts_jpeg(self):
        validate_device_photo(SimpleUploadedFile('front.jpg', b'data', content_type='image/jpeg'))

    def test_rejects_large_file(self):
        upload = SimpleUploadedFile('front.jpg', b'0' * (5 * 1024 * 1024 + 1), content_type='image/jpeg')

        with pytest.raises(ValidationError) as excinfo:
            validate_device_photo(upload)

        assert excinfo.value.code == 'image_too_large'

    def test_rejects_extension(self):
        with pytest.raises(ValidationError) as excinfo:
            validate_device_photo(SimpleUploadedFile('front.gif', b'data', content_type='image/gif'))

        assert excinfo.value.code == 'invalid_image_format'

    def test_rejects_content_type(self):
        upload = SimpleUploadedFile('front.png', b'data', content_type='application/pdf')

        with pytest.raises(ValidationError) as excinfo:
            validate_device_photo(upload)

        assert excinfo.value.code == 'invalid_content_type'
