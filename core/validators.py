"""
Custom validators for marketplace models.
"""

import re
from django.core.exceptions import ValidationError


def normalize_phone_number(value):
    """
    Strip separators from a phone number so lookups compare equal.

    '+91 98765-43210' and '+919876543210' normalize to the same value.
    """
    if not value:
        return value
    return re.sub(r'[\s\-\(\)]', '', value.strip())


def validate_phone_number(value):
    """
    Validate WhatsApp phone number format.

    Accepts international formats with optional country codes, spaces, dashes, and parentheses.
    Requires at least 10 digits.

    Valid formats:
    - +91 98765 43210
    - +91-98765-43210
    - 9876543210

    Raises:
        ValidationError: If phone number format is invalid
    """
    if not value:
        return

    if not re.match(r'^[\d\s\-\+\(\)]+$', value):
        raise ValidationError(
            'Phone number can only contain digits, spaces, dashes, parentheses, and plus sign.',
            code='invalid_phone_chars'
        )

    digits = re.sub(r'\D', '', value)

    if len(digits) < 10:
        raise ValidationError(
            'Phone number must contain at least 10 digits.',
            code='phone_too_short'
        )

    if len(digits) > 15:
        raise ValidationError(
            'Phone number cannot contain more than 15 digits.',
            code='phone_too_long'
        )

    # Must not be all the same digit (like 0000000000)
    if len(set(digits)) == 1:
        raise ValidationError(
            'Phone number cannot be all the same digit.',
            code='invalid_phone_pattern'
        )


def validate_imei(value):
    """
    Validate an IMEI: exactly 15 digits with a valid Luhn check digit.

    Raises:
        ValidationError: If the IMEI is malformed
    """
    if not value:
        return

    if not re.fullmatch(r'\d{15}', value):
        raise ValidationError(
            'IMEI must be exactly 15 digits.',
            code='imei_format'
        )

    total = 0
    for index, char in enumerate(reversed(value)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit

    if total % 10 != 0:
        raise ValidationError(
            'IMEI check digit is invalid.',
            code='imei_checksum'
        )


def validate_pincode(value):
    """Validate a 6 digit postal code."""
    if not re.fullmatch(r'[1-9]\d{5}', value or ''):
        raise ValidationError(
            'Pincode must be 6 digits and cannot start with 0.',
            code='invalid_pincode'
        )


def validate_device_photo(image):
    """
    Validate a device photo upload.

    Checks:
    - File size (max 5MB)
    - File format (jpg, jpeg, png, webp)

    Args:
        image: UploadedFile object

    Raises:
        ValidationError: If image is invalid
    """
    if not image:
        return

    max_size = 5 * 1024 * 1024
    if image.size > max_size:
        raise ValidationError(
            f'Image file size cannot exceed 5MB. Current size: {image.size / (1024 * 1024):.2f}MB',
            code='image_too_large'
        )

    valid_extensions = ['jpg', 'jpeg', 'png', 'webp']
    file_name = image.name.lower()

    if not any(file_name.endswith(f'.{ext}') for ext in valid_extensions):
        raise ValidationError(
            f'Invalid image format. Allowed formats: {", ".join(valid_extensions)}',
            code='invalid_image_format'
        )

    valid_content_types = [
        'image/jpeg',
        'image/png',
        'image/webp'
    ]

    content_type = getattr(image, 'content_type', None)
    if content_type and content_type not in valid_content_types:
        raise ValidationError(
            f'Invalid image content type: {content_type}',
            code='invalid_content_type'
        )
