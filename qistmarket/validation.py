"""
Input Validation and Sanitization Utilities
Provides centralized input validation and HTML sanitization
"""
from marshmallow import EXCLUDE, Schema, fields, validate, ValidationError, pre_load
from marshmallow.validate import Length
import bleach


def sanitize_text(text):
    """
    Sanitize plain text by removing HTML tags

    Args:
        text: Text string to sanitize

    Returns:
        str: Sanitized text
    """
    if not text:
        return ""

    return bleach.clean(text, tags=[], strip=True)


class SanitizedSchema(Schema):
    """Strips markup and surrounding whitespace from every string input"""

    class Meta:
        unknown = EXCLUDE

    # Keys that must reach the handler byte-for-byte
    RAW_KEYS = ('password',)

    @pre_load
    def sanitize_inputs(self, data, **kwargs):
        """Sanitize string inputs"""
        if isinstance(data, dict):
            data = dict(data)
            for key, value in data.items():
                if isinstance(value, str) and key not in self.RAW_KEYS:
                    data[key] = sanitize_text(value).strip()
        return data


class NonBlankStr(fields.Str):
    """String that treats empty input as missing"""

    default_error_messages = {'blank': 'Field may not be blank.'}

    def _deserialize(self, value, attr, data, **kwargs):
        value = super()._deserialize(value, attr, data, **kwargs)
        if not value.strip():
            raise self.make_error('blank')
        return value



class WholeNumber(fields.Int):
    """Integer that rejects fractional input instead of truncating it"""

    default_error_messages = {'fractional': 'Not a whole number.'}

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, float) and not value.is_integer():
            raise self.make_error('fractional')
        return super()._deserialize(value, attr, data, **kwargs)

# Validation Schemas using Marshmallow

class OrderCreateSchema(SanitizedSchema):
    """Schema for order creation validation"""
    customer_name = NonBlankStr(required=True, validate=Length(max=150))
    whatsapp_number = NonBlankStr(required=True, validate=Length(max=20))
    address = NonBlankStr(required=True)
    city = fields.Str(validate=Length(max=100), allow_none=True)
    area = fields.Str(validate=Length(max=100), allow_none=True)
    product_name = NonBlankStr(required=True, validate=Length(max=255))
    total_amount = fields.Float(required=True, validate=validate.Range(min=0))
    advance_amount = fields.Float(required=True, validate=validate.Range(min=0))
    monthly_amount = fields.Float(required=True, validate=validate.Range(min=0))
    months = WholeNumber(required=True, validate=validate.Range(min=1))
    channel = NonBlankStr(required=True, validate=Length(max=50))


class SignupSchema(SanitizedSchema):
    """Schema for staff account creation"""
    full_name = NonBlankStr(required=True, validate=Length(max=150))
    username = NonBlankStr(required=True, validate=Length(min=3, max=80))
    password = fields.Str(required=True, validate=Length(min=6, max=128))
    role_id = fields.Int(required=True)
    email = fields.Email(allow_none=True)
    cnic = fields.Str(validate=Length(max=20), allow_none=True)
    phone = fields.Str(validate=Length(max=20), allow_none=True)


class LoginSchema(SanitizedSchema):
    """Schema for login validation"""
    username = NonBlankStr(required=True, validate=Length(max=80))
    password = fields.Str(required=True, validate=Length(min=1, max=128))
    device_id = fields.Str(validate=Length(max=255), allow_none=True)
    fcm_token = fields.Str(validate=Length(max=500), allow_none=True)


class ProfileUpdateSchema(SanitizedSchema):
    """Schema for profile update validation"""
    full_name = NonBlankStr(validate=Length(max=150))
    email = fields.Email(allow_none=True)
    phone = fields.Str(validate=Length(max=20), allow_none=True)
    bio = fields.Str(allow_none=True)
    avatar_url = fields.Str(validate=Length(max=500), allow_none=True)
    cover_image_url = fields.Str(validate=Length(max=500), allow_none=True)
    fcm_token = fields.Str(validate=Length(max=500), allow_none=True)


class UserUpdateSchema(SanitizedSchema):
    """Schema for admin edits of another user"""
    full_name = NonBlankStr(validate=Length(max=150))
    email = fields.Email(allow_none=True)
    cnic = fields.Str(validate=Length(max=20), allow_none=True)
    phone = fields.Str(validate=Length(max=20), allow_none=True)
    role_id = fields.Int()
    bio = fields.Str(allow_none=True)
    password = fields.Str(validate=Length(min=6, max=128))


class LocationSchema(SanitizedSchema):
    latitude = fields.Float(required=True, validate=validate.Range(min=-90, max=90))
    longitude = fields.Float(required=True, validate=validate.Range(min=-180, max=180))
    accuracy = fields.Float(allow_none=True)
    label = fields.Str(validate=Length(max=255), allow_none=True)


def validate_request_data(schema_class, data, partial=False):
    """
    Validate request data against a schema

    Args:
        schema_class: Marshmallow Schema class
        data: Data dictionary to validate
        partial: Allow required fields to be absent (updates)

    Returns:
        tuple: (validated_data, errors)
        - validated_data: Cleaned and validated data
        - errors: Dictionary of validation errors (empty if valid)
    """
    try:
        schema = schema_class(partial=partial)
        validated_data = schema.load(data or {})
        return validated_data, {}
    except ValidationError as err:
        return None, err.messages
