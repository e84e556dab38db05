import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from .. import config
from ..cache import (
    cache_appointment_types,
    cache_availability,
    get_cached_appointment_types,
    get_cached_availability,
    invalidate_availability_cache,
)

logger = logging.getLogger(__name__)

FORM_FIELD_TYPES = {
    "textbox",
    "textarea",
    "dropdown",
    "checkbox",
    "checkboxlist",
    "yesno",
    "file",
    "address",
}


class AcuityAPIError(Exception):
    """Raised when the Acuity API cannot be reached or rejects a request"""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


class AcuityService:
    """Service for interacting with the Acuity Scheduling API"""

    REQUEST_TIMEOUT = 30.0

    def __init__(
        self,
        user_id: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_id = user_id if user_id is not None else config.ACUITY_USER_ID
        self.api_key = api_key if api_key is not None else config.ACUITY_API_KEY
        self.base_url = (base_url or config.ACUITY_BASE_URL).rstrip("/")
        self.rate_limit_per_second = config.ACUITY_RATE_LIMIT_PER_SECOND
        self.rate_limit_per_hour = config.ACUITY_RATE_LIMIT_PER_HOUR
        self.transport = transport

        now = time.monotonic()
        self._requests_this_second = 0
        self._requests_this_hour = 0
        self._second_reset_at = now + 1
        self._hour_reset_at = now + 3600
        self._throttle_lock: Optional[asyncio.Lock] = None
        self._throttle_loop = None

    def _get_throttle_lock(self) -> asyncio.Lock:
        # asyncio locks bind to the loop they first wait on
        loop = asyncio.get_running_loop()
        if self._throttle_lock is None or self._throttle_loop is not loop:
            self._throttle_lock = asyncio.Lock()
            self._throttle_loop = loop
        return self._throttle_lock

    async def _throttle(self) -> None:
        """Client-side throttle matching Acuity's published limits"""
        async with self._get_throttle_lock():
            await self._reserve_slot()

    async def _reserve_slot(self) -> None:
        now = time.monotonic()
        if now >= self._second_reset_at:
            self._requests_this_second = 0
            self._second_reset_at = now + 1
        if now >= self._hour_reset_at:
            self._requests_this_hour = 0
            self._hour_reset_at = now + 3600

        if self._requests_this_hour >= self.rate_limit_per_hour:
            logger.error("❌ Acuity hourly request budget exhausted")
            raise AcuityAPIError(
                "Hourly rate limit exceeded", status_code=429, code="RATE_LIMIT_EXCEEDED"
            )

        if self._requests_this_second >= self.rate_limit_per_second:
            wait = max(0.0, self._second_reset_at - now)
            logger.debug(f"⏳ Acuity per-second limit reached, waiting {wait:.2f}s")
            await asyncio.sleep(wait)
            self._requests_this_second = 0
            self._second_reset_at = time.monotonic() + 1

        self._requests_this_second += 1
        self._requests_this_hour += 1

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        await self._throttle()

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.user_id, self.api_key),
                timeout=self.REQUEST_TIMEOUT,
                headers={"Accept": "application/json"},
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, params=params, json=json)
        except httpx.TimeoutException as e:
            logger.error(f"❌ Acuity request timed out: {method} {path}")
            raise AcuityAPIError("Request timeout", status_code=408, code="TIMEOUT") from e
        except httpx.HTTPError as e:
            logger.error(f"❌ Acuity network error: {method} {path}: {e}")
            raise AcuityAPIError(
                "Network error", code="NETWORK_ERROR", details=str(e)
            ) from e

        if response.is_success:
            if not response.content:
                return None
            return response.json()

        status = response.status_code
        logger.error(f"❌ Acuity API error {status}: {method} {path}")

        if status in (502, 503):
            raise AcuityAPIError(
                "Acuity service temporarily unavailable",
                status_code=status,
                code="SERVICE_UNAVAILABLE",
            )
        if status == 401:
            raise AcuityAPIError(
                "Invalid Acuity API credentials", status_code=401, code="UNAUTHORIZED"
            )

        try:
            body = response.json()
        except ValueError:
            body = None
        message = body.get("message") if isinstance(body, dict) else None
        raise AcuityAPIError(
            message or response.text or f"HTTP {status}",
            status_code=status,
            code=(body.get("error") if isinstance(body, dict) else None) or "UNKNOWN_ERROR",
            details=body,
        )

    # Calendars

    async def get_calendars(self) -> list[dict]:
        return await self._request("GET", "/calendars") or []

    async def get_calendar_by_id(self, calendar_id: int) -> Optional[dict]:
        calendars = await self.get_calendars()
        return next((c for c in calendars if c.get("id") == calendar_id), None)

    # Appointment types

    async def get_appointment_types(self) -> list[dict]:
        cached = get_cached_appointment_types()
        if cached is not None:
            logger.debug("🔍 Returning cached appointment types")
            return cached

        types = await self._request("GET", "/appointment-types") or []
        cache_appointment_types(types)
        return types

    # Availability

    async def get_availability_dates(
        self, month: str, appointment_type_id: int, calendar_id: Optional[int] = None
    ) -> list[str]:
        params = {"month": month, "appointmentTypeID": appointment_type_id}
        if calendar_id is not None:
            params["calendarID"] = calendar_id
        dates = await self._request("GET", "/availability/dates", params=params) or []
        return [d["date"] for d in dates if isinstance(d, dict) and d.get("date")]

    async def get_availability_times(
        self,
        appointment_type_id: int,
        calendar_id: int,
        date: str,
        timezone: Optional[str] = None,
    ) -> list[dict]:
        cached = get_cached_availability(calendar_id, date, appointment_type_id)
        if cached is not None:
            logger.debug(f"🔍 Returning cached availability for calendar {calendar_id} on {date}")
            return cached

        params = {
            "appointmentTypeID": appointment_type_id,
            "calendarID": calendar_id,
            "date": date,
        }
        if timezone:
            params["timezone"] = timezone

        times = await self._request("GET", "/availability/times", params=params) or []
        cache_availability(calendar_id, date, appointment_type_id, times)
        return times

    # Appointments

    async def create_appointment(
        self,
        datetime: str,
        appointment_type_id: int,
        first_name: str,
        last_name: str,
        email: str,
        phone: Optional[str] = None,
        timezone: Optional[str] = None,
        calendar_id: Optional[int] = None,
        fields: Optional[list[dict]] = None,
        notes: Optional[str] = None,
    ) -> dict:
        payload: dict[str, Any] = {
            "appointmentTypeID": appointment_type_id,
            "datetime": datetime,
            "firstName": first_name,
            "lastName": last_name,
            "email": email,
        }
        if phone:
            payload["phone"] = phone
        if timezone:
            payload["timezone"] = timezone
        if fields:
            payload["fields"] = fields
        if notes:
            payload["notes"] = notes
        if calendar_id:
            payload["calendarID"] = calendar_id

        appointment = self._require_appointment(
            await self._request("POST", "/appointments", json=payload)
        )
        logger.info(f"✅ Acuity appointment created: {appointment['id']}")

        if appointment.get("calendarID"):
            invalidate_availability_cache(appointment["calendarID"])
        return appointment

    async def update_appointment(self, appointment_id: int, **changes) -> dict:
        appointment = self._require_appointment(
            await self._request("PUT", f"/appointments/{appointment_id}", json=changes)
        )
        invalidate_availability_cache(appointment.get("calendarID"))
        return appointment

    async def cancel_appointment(self, appointment_id: int) -> None:
        try:
            appointment = await self.get_appointment(appointment_id)
        except AcuityAPIError as e:
            logger.warning(f"⚠️ Could not load appointment {appointment_id} before cancel: {e}")
            await self._request("DELETE", f"/appointments/{appointment_id}")
            invalidate_availability_cache()
            return

        await self._request("DELETE", f"/appointments/{appointment_id}")
        invalidate_availability_cache(appointment.get("calendarID"))
        logger.info(f"✅ Acuity appointment cancelled: {appointment_id}")

    async def get_appointment(self, appointment_id: int) -> dict:
        return self._require_appointment(
            await self._request("GET", f"/appointments/{appointment_id}")
        )

    @staticmethod
    def _require_appointment(data: Any) -> dict:
        if not isinstance(data, dict) or not isinstance(data.get("id"), int):
            logger.error(f"❌ Invalid appointment data from Acuity: {data!r}")
            raise AcuityAPIError("Invalid appointment data received from Acuity")
        return data

    # Forms

    async def get_forms(self) -> list[dict]:
        forms = await self._request("GET", "/forms") or []
        results = []
        for form in forms:
            if not isinstance(form, dict) or not isinstance(form.get("id"), int):
                logger.error(f"❌ Invalid form data from Acuity: {form!r}")
                raise AcuityAPIError("Invalid form data received from Acuity")

            valid_fields = []
            for field in form.get("fields") or []:
                if (
                    isinstance(field, dict)
                    and isinstance(field.get("id"), int)
                    and isinstance(field.get("name"), str)
                    and field.get("type") in FORM_FIELD_TYPES
                ):
                    valid_fields.append(field)
                else:
                    logger.warning(f"⚠️ Skipping invalid field on form {form['id']}: {field!r}")

            results.append({**form, "fields": valid_fields})
        return results


acuity_service = AcuityService()


def get_acuity_service() -> AcuityService:
    return acuity_service
