"""Load booking configurations from a JSON list on disk."""

from __future__ import annotations
from tracking import t

import json
import logging
from pathlib import Path
from typing import List, Optional

from automation.shared.booking_contracts import BookingRequest
from reservations.validation import validate_booking_request

logger = logging.getLogger("ConfigStore")


def load_booking_requests(
    file_path: str,
    *,
    only_enabled: bool = True,
    log: Optional[logging.Logger] = None,
) -> List[BookingRequest]:
    """Parse, validate and return requests; invalid entries are skipped with a warning."""
    t('reservations.config_store.load_booking_requests')

    log = log or logger
    path = Path(file_path)
    with path.open('r', encoding='utf-8') as handle:
        payload = json.load(handle)

    if isinstance(payload, dict):
        payload = payload.get("configs", [])
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a list of configurations")

    requests: List[BookingRequest] = []
    for index, entry in enumerate(payload):
        try:
            request = BookingRequest.from_dict(entry)
        except (TypeError, ValueError, AttributeError) as exc:
            log.warning("Skipping configuration #%s: %s", index, exc)
            continue

        errors = validate_booking_request(request)
        if errors:
            log.warning("Skipping configuration %r: %s", request.name, "; ".join(errors))
            continue
        if only_enabled and not request.enabled:
            log.debug("Configuration %r is disabled", request.name)
            continue
        requests.append(request)

    log.info("Loaded %s booking configuration(s) from %s", len(requests), path)
    return requests
