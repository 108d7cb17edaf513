"""Input validation utilities for the inspection KPI API."""
import re
from typing import Optional, Tuple, Any

from inspection_kpi.services.periods import Cadence

# Validation patterns
BUSINESS_UNIT_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,20}$')
EQUIPMENT_TYPE_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,40}$')
ALLOWED_FREQUENCIES = {c.value for c in Cadence}
MAX_SITE_LENGTH = 50
MAX_PAGE_SIZE = 100


def validate_business_unit(business_unit: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate business unit code.
    Returns (is_valid, error_message).
    """
    if not business_unit:
        return False, "Business unit parameter is required"
    if not isinstance(business_unit, str):
        return False, "Business unit must be a string"
    if len(business_unit) > 20:
        return False, "Business unit is too long"
    if not BUSINESS_UNIT_PATTERN.match(business_unit):
        return False, "Business unit contains invalid characters"
    return True, None


def validate_site(site: Any) -> Tuple[bool, Optional[str]]:
    """Site codes are optional; when given they must be short printable strings."""
    if site is None:
        return True, None
    if not isinstance(site, str) or not site.strip():
        return False, "Site must be a non-empty string"
    if len(site) > MAX_SITE_LENGTH:
        return False, f"Site exceeds maximum length of {MAX_SITE_LENGTH} characters"
    if any(ord(ch) < 32 for ch in site):
        return False, "Site contains invalid characters"
    return True, None


def validate_frequency(frequency: Any) -> Tuple[bool, Optional[str]]:
    if frequency is None:
        return True, None
    if not isinstance(frequency, str) or frequency.lower() not in ALLOWED_FREQUENCIES:
        return False, f"Frequency must be one of: {', '.join(sorted(ALLOWED_FREQUENCIES))}"
    return True, None


def validate_equipment_type(equipment_type: Any) -> Tuple[bool, Optional[str]]:
    if not equipment_type:
        return False, "Equipment type is required"
    if not isinstance(equipment_type, str) or not EQUIPMENT_TYPE_PATTERN.match(equipment_type):
        return False, "Equipment type contains invalid characters"
    return True, None


def validate_kpi_request(args: dict) -> Tuple[bool, Optional[str]]:
    """
    Validate the query parameters of a KPI request.
    Returns (is_valid, error_message).
    """
    is_valid, error = validate_business_unit(args.get('bu'))
    if not is_valid:
        return False, error

    is_valid, error = validate_site(args.get('site'))
    if not is_valid:
        return False, error

    return validate_frequency(args.get('frequency'))


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) and v for v in value)


def validate_configuration(data: dict) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration payload.
    Returns (is_valid, error_message).
    """
    if not data:
        return False, "Configuration data is required"
    if not isinstance(data, dict):
        return False, "Configuration must be an object"

    if 'equipment_periods' in data:
        periods = data['equipment_periods']
        if not isinstance(periods, dict):
            return False, "equipment_periods must be an object"
        for scope, mapping in periods.items():
            if not isinstance(mapping, dict):
                return False, f"equipment_periods.{scope} must be an object"
            for equipment_type, cadence in mapping.items():
                if not isinstance(cadence, str) or cadence.lower() not in ALLOWED_FREQUENCIES:
                    return False, (
                        f"Cadence for '{equipment_type}' in {scope} must be one of: "
                        f"{', '.join(sorted(ALLOWED_FREQUENCIES))}"
                    )

    if 'mixer_types' in data and not _is_string_list(data['mixer_types']):
        return False, "mixer_types must be a list of type tags"

    if 'bu_sites' in data:
        bu_sites = data['bu_sites']
        if not isinstance(bu_sites, dict):
            return False, "bu_sites must be an object"
        for bu, sites in bu_sites.items():
            if not _is_string_list(sites):
                return False, f"bu_sites.{bu} must be a list of site codes"

    return True, None


def validate_pagination(page: Any, limit: Any) -> Tuple[bool, Optional[str]]:
    """
    Validate the ``page`` and ``limit`` query parameters; absent values are
    allowed and take their defaults.
    Returns (is_valid, error_message).
    """
    if page is not None:
        if not str(page).isdigit() or int(page) < 1:
            return False, "Page must be a positive integer"
    if limit is not None:
        if not str(limit).isdigit() or not 1 <= int(limit) <= MAX_PAGE_SIZE:
            return False, f"Limit must be an integer between 1 and {MAX_PAGE_SIZE}"
    return True, None
