"""
Salesforce Record Store Adapter.
Uses the 'simple-salesforce' library with Username-Password OAuth flow
(or a ready session id).

Single records go through the sObject resources (sf.<SObject>.create/...).
Lists go through the sObject Collections resource with allOrNone=true, so
every list write is one transactional call, the same unit of atomicity as a
DML statement on the platform. Collections accept at most 200 records per call.
"""
import os
import re
import logging
from typing import Iterable, Optional

from simple_salesforce import Salesforce, format_soql
from simple_salesforce.exceptions import SalesforceMalformedRequest

from .base import RecordStore

logger = logging.getLogger(__name__)

API_VERSION = os.getenv("SALESFORCE_API_VERSION", "59.0")
COLLECTIONS_PATH = "composite/sobjects"

# Oldest first, so "first match" means the earliest created record.
QUERY_ORDER = "CreatedDate, Id"

IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_]*(\.[A-Za-z][A-Za-z0-9_]*)*$")


def _identifier(name: str) -> str:
    """sObject and field names are spliced into URLs and SOQL; only allow API names."""
    if not IDENTIFIER.match(name or ""):
        raise ValueError(f"Invalid Salesforce API name: {name!r}")
    return name


def _writable_fields(record: dict) -> dict:
    """Field values to send on a write (no Id, no query metadata)."""
    return {k: v for k, v in record.items() if k not in ("Id", "attributes")}


def _clean(record: dict) -> dict:
    return {k: v for k, v in record.items() if k != "attributes"}


def _collection_payload(sobject: str, records: list[dict], keep_id: bool) -> dict:
    return {
        "allOrNone": True,
        "records": [
            {
                "attributes": {"type": sobject},
                **({"Id": r["Id"]} if keep_id else {}),
                **_writable_fields(r),
            }
            for r in records
        ],
    }


def _record_errors(results) -> list[dict]:
    """Errors of the records that failed in a collections result list."""
    return [
        error
        for result in results or []
        if not result.get("success")
        for error in result.get("errors", [])
    ]


class SalesforceStore(RecordStore):
    """
    Salesforce record store.

    Every call runs as the authenticated user, so the platform enforces that
    user's object and field permissions on each read and write.

    Either:
      SALESFORCE_INSTANCE_URL
      SALESFORCE_ACCESS_TOKEN
    or:
      SALESFORCE_USERNAME
      SALESFORCE_PASSWORD
      SALESFORCE_SECURITY_TOKEN
      SALESFORCE_DOMAIN ("login" or "test", optional)
    """

    provider = "salesforce"

    def __init__(self, sf: Optional[Salesforce] = None):
        self.sf = sf or self._connect()
        logger.info("✅ Salesforce store initialized")

    @staticmethod
    def _connect() -> Salesforce:
        instance_url = os.getenv("SALESFORCE_INSTANCE_URL")
        access_token = os.getenv("SALESFORCE_ACCESS_TOKEN")
        if instance_url and access_token:
            return Salesforce(instance_url=instance_url, session_id=access_token, version=API_VERSION)

        username = os.getenv("SALESFORCE_USERNAME")
        password = os.getenv("SALESFORCE_PASSWORD")
        security_token = os.getenv("SALESFORCE_SECURITY_TOKEN")

        if not all([username, password, security_token]):
            raise ValueError(
                "Salesforce credentials not fully set. Need SALESFORCE_INSTANCE_URL and "
                "SALESFORCE_ACCESS_TOKEN, or: SALESFORCE_USERNAME, SALESFORCE_PASSWORD, "
                "SALESFORCE_SECURITY_TOKEN"
            )

        try:
            return Salesforce(
                username=username,
                password=password,
                security_token=security_token,
                domain=os.getenv("SALESFORCE_DOMAIN", "login"),
                version=API_VERSION,
            )
        except Exception as e:
            logger.error(f"❌ Salesforce auth failed: {e}")
            raise

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def _collection(self, method: str, path: str, sobject: str, records: list[dict], keep_id: bool):
        results = self.sf.restful(
            path, method=method, json=_collection_payload(sobject, records, keep_id)
        )
        self._raise_for_errors(path, sobject, _record_errors(results))
        return results

    def _raise_for_errors(self, path: str, sobject: str, errors: list[dict]) -> None:
        """
        Collections and composite calls report failures inside a 200 response.
        Surface them the way a failing single-record call would.
        """
        if errors:
            logger.error(f"❌ Salesforce {sobject} call failed: {errors}")
            raise SalesforceMalformedRequest(self.sf.base_url + path, 400, sobject, errors)

    # -------------------------------------------------------------------------
    # DML
    # -------------------------------------------------------------------------

    def insert(self, sobject: str, records: list[dict]) -> list[str]:
        _identifier(sobject)
        if not records:
            return []

        if len(records) == 1:
            result = getattr(self.sf, sobject).create(_writable_fields(records[0]))
            ids = [result["id"]]
        else:
            results = self._collection("POST", COLLECTIONS_PATH, sobject, records, keep_id=False)
            ids = [result["id"] for result in results]

        for record, record_id in zip(records, ids):
            record["Id"] = record_id
        logger.info(f"✅ Salesforce {sobject} inserted: {len(ids)} record(s)")
        return ids

    def update(self, sobject: str, records: list[dict]) -> None:
        _identifier(sobject)
        if not records:
            return

        if len(records) == 1:
            record = records[0]
            getattr(self.sf, sobject).update(record["Id"], _writable_fields(record))
        else:
            self._collection("PATCH", COLLECTIONS_PATH, sobject, records, keep_id=True)
        logger.info(f"✅ Salesforce {sobject} updated: {len(records)} record(s)")

    def upsert(
        self, sobject: str, records: list[dict], external_id_field: str = "Id"
    ) -> list[dict]:
        _identifier(sobject)
        if not records:
            return []

        if external_id_field != "Id":
            path = f"{COLLECTIONS_PATH}/{sobject}/{_identifier(external_id_field)}"
            results = self._collection("PATCH", path, sobject, records, keep_id=False)
            for record, result in zip(records, results):
                record["Id"] = result["id"]
            logger.info(f"✅ Salesforce {sobject} upserted on {external_id_field}: {len(records)} record(s)")
            return [{"id": r["id"], "created": bool(r.get("created"))} for r in results]

        # Keyed on Id: records that already carry one are updates.
        existing = [r for r in records if r.get("Id")]
        new = [r for r in records if not r.get("Id")]
        if not new:
            self.update(sobject, existing)
        elif not existing:
            self.insert(sobject, new)
        else:
            self._update_and_create(sobject, existing, new)

        created = {id(r) for r in new}
        return [{"id": r["Id"], "created": id(r) in created} for r in records]

    def _update_and_create(self, sobject: str, existing: list[dict], new: list[dict]) -> None:
        """
        Update and create in a single composite request with allOrNone, so a
        failure in either half rolls back both.
        """
        collections_url = f"/services/data/v{self.sf.sf_version}/{COLLECTIONS_PATH}"
        response = self.sf.restful(
            "composite",
            method="POST",
            json={
                "allOrNone": True,
                "compositeRequest": [
                    {
                        "method": "PATCH",
                        "url": collections_url,
                        "referenceId": "existing",
                        "body": _collection_payload(sobject, existing, keep_id=True),
                    },
                    {
                        "method": "POST",
                        "url": collections_url,
                        "referenceId": "new",
                        "body": _collection_payload(sobject, new, keep_id=False),
                    },
                ],
            },
        )

        bodies = {}
        errors = []
        for sub in response["compositeResponse"]:
            body = sub.get("body") or []
            if sub.get("httpStatusCode", 200) >= 300:
                errors.extend(body)
            else:
                errors.extend(_record_errors(body))
            bodies[sub["referenceId"]] = body
        self._raise_for_errors("composite", sobject, errors)

        for record, result in zip(new, bodies["new"]):
            record["Id"] = result["id"]
        logger.info(
            f"✅ Salesforce {sobject} upserted: {len(existing)} updated, {len(new)} created"
        )

    def delete(self, sobject: str, record_ids: list[str]) -> None:
        _identifier(sobject)
        if not record_ids:
            return

        if len(record_ids) == 1:
            getattr(self.sf, sobject).delete(record_ids[0])
        else:
            results = self.sf.restful(
                COLLECTIONS_PATH,
                params={"ids": ",".join(record_ids), "allOrNone": "true"},
                method="DELETE",
            )
            self._raise_for_errors(COLLECTIONS_PATH, sobject, _record_errors(results))
        logger.info(f"🗑️ Salesforce {sobject} deleted: {len(record_ids)} record(s)")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(
        self, sobject: str, record_id: str, fields: Optional[Iterable[str]] = None
    ) -> dict:
        sf_type = getattr(self.sf, _identifier(sobject))
        if fields is None:
            return _clean(sf_type.get(record_id))

        field_list = ["Id"] + [_identifier(f) for f in fields if f != "Id"]
        record = sf_type.get(record_id, params={"fields": ",".join(field_list)})
        return {f: record.get(f) for f in field_list}

    def query(
        self,
        sobject: str,
        fields: Iterable[str],
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        field_list = ["Id"] + [_identifier(f) for f in fields if f != "Id"]
        soql = f"SELECT {', '.join(field_list)} FROM {_identifier(sobject)}"

        conditions = []
        for field, value in (filters or {}).items():
            if isinstance(value, (list, tuple, set, frozenset)):
                if not value:
                    # IN () can never match and is not valid SOQL.
                    return []
                values = sorted(value, key=str) if isinstance(value, (set, frozenset)) else list(value)
                conditions.append(format_soql(f"{_identifier(field)} IN {{}}", values))
            else:
                conditions.append(format_soql(f"{_identifier(field)} = {{}}", value))
        if conditions:
            soql += " WHERE " + " AND ".join(conditions)
        soql += f" ORDER BY {QUERY_ORDER}"
        if limit is not None:
            soql += f" LIMIT {int(limit)}"

        result = self.sf.query_all(soql)
        return [_clean(record) for record in result.get("records", [])]
