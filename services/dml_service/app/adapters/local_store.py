"""
Local Record Store Adapter.
Keeps CRM records in a SQL database through SQLAlchemy so the DML operations
can run without a Salesforce org (development, demos, tests).

Reproduces the platform behaviour the operations rely on: 18-character ids
with the standard key prefixes, required fields, AccountId lookups that must
resolve, all-or-none writes, and the same simple-salesforce exceptions
(with the platform's error codes) a real org answers with.
"""
import logging
from typing import Iterable, Optional

from simple_salesforce.exceptions import (
    SalesforceMalformedRequest,
    SalesforceMoreThanOneRecord,
    SalesforceResourceNotFound,
)
from sqlalchemy.orm import Session, sessionmaker

from ..database import SessionLocal
from ..models import StoredRecord
from .base import RecordStore

logger = logging.getLogger(__name__)

KEY_PREFIXES = {
    "Account": "001",
    "Contact": "003",
    "Opportunity": "006",
    "Lead": "00Q",
    "Case": "500",
}

REQUIRED_FIELDS = {
    "Account": ("Name",),
    "Contact": ("LastName",),
    "Opportunity": ("Name", "StageName", "CloseDate"),
    "Lead": ("LastName", "Company"),
    "Case": (),
}

LOOKUP_FIELDS = {"AccountId": "Account"}

BASE62 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
CHECKSUM_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ012345"


def _to_base62(number: int, width: int) -> str:
    digits = ""
    while number:
        number, rem = divmod(number, 62)
        digits = BASE62[rem] + digits
    return digits.rjust(width, "0")


def id_checksum(id15: str) -> str:
    """
    The 3-character suffix that makes a 15-character id case-insensitive:
    one character per 5-character chunk, encoding which positions are
    upper-case letters.
    """
    suffix = ""
    for start in range(0, 15, 5):
        chunk = id15[start:start + 5]
        bits = sum(1 << i for i, c in enumerate(chunk) if "A" <= c <= "Z")
        suffix += CHECKSUM_CHARS[bits]
    return suffix


def make_record_id(sobject: str, sequence: int) -> str:
    """Build an 18-character record id from the object's key prefix and a row number."""
    id15 = KEY_PREFIXES[sobject] + "5g0" + _to_base62(sequence, 9)
    return id15 + id_checksum(id15)


def _writable_fields(record: dict) -> dict:
    return {k: v for k, v in record.items() if k not in ("Id", "attributes")}


class LocalStore(RecordStore):
    """
    SQL-backed record store.

    Every DML call runs inside one database transaction; any failing record
    rolls back the whole call and the error propagates to the caller.
    """

    provider = "local"

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    # -------------------------------------------------------------------------
    # Platform rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _url(sobject: str) -> str:
        return f"local://sobjects/{sobject}"

    def _not_found(self, sobject: str, message: str) -> SalesforceResourceNotFound:
        return SalesforceResourceNotFound(
            self._url(sobject), 404, sobject, [{"errorCode": "NOT_FOUND", "message": message}]
        )

    def _malformed(self, sobject: str, code: str, message: str, fields=()) -> SalesforceMalformedRequest:
        return SalesforceMalformedRequest(
            self._url(sobject),
            400,
            sobject,
            [{"errorCode": code, "message": message, "fields": list(fields)}],
        )

    def _check_sobject(self, sobject: str) -> None:
        if sobject not in KEY_PREFIXES:
            raise self._not_found(sobject, f"sObject type '{sobject}' is not supported")

    def _validate(self, db: Session, sobject: str, fields: dict) -> None:
        missing = [f for f in REQUIRED_FIELDS[sobject] if fields.get(f) in (None, "")]
        if missing:
            raise self._malformed(
                sobject,
                "REQUIRED_FIELD_MISSING",
                f"Required fields are missing: [{', '.join(missing)}]",
                missing,
            )
        for field, target in LOOKUP_FIELDS.items():
            value = fields.get(field)
            if value and self._find(db, target, value) is None:
                raise self._malformed(
                    sobject,
                    "INVALID_CROSS_REFERENCE_KEY",
                    f"invalid cross reference id: {value}",
                    [field],
                )

    # -------------------------------------------------------------------------
    # Row helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _find(db: Session, sobject: str, record_id: str) -> Optional[StoredRecord]:
        return (
            db.query(StoredRecord)
            .filter(StoredRecord.sobject == sobject, StoredRecord.record_id == record_id)
            .first()
        )

    def _load(self, db: Session, sobject: str, record_id: str) -> StoredRecord:
        row = self._find(db, sobject, record_id)
        if row is None:
            raise self._not_found(sobject, f"{sobject} {record_id} does not exist")
        return row

    @staticmethod
    def _rows(db: Session, sobject: str) -> list[StoredRecord]:
        return (
            db.query(StoredRecord)
            .filter(StoredRecord.sobject == sobject)
            .order_by(StoredRecord.pk)
            .all()
        )

    def _create_row(self, db: Session, sobject: str, record: dict) -> StoredRecord:
        fields = _writable_fields(record)
        self._validate(db, sobject, fields)
        row = StoredRecord(sobject=sobject, fields=fields)
        db.add(row)
        db.flush()
        row.record_id = make_record_id(sobject, row.pk)
        db.flush()
        return row

    def _apply(self, db: Session, sobject: str, row: StoredRecord, record: dict) -> None:
        merged = {**row.fields, **_writable_fields(record)}
        self._validate(db, sobject, merged)
        # Reassign so the JSON column is marked dirty.
        row.fields = merged

    # -------------------------------------------------------------------------
    # DML
    # -------------------------------------------------------------------------

    def insert(self, sobject: str, records: list[dict]) -> list[str]:
        self._check_sobject(sobject)
        with self.session_factory.begin() as db:
            ids = [self._create_row(db, sobject, record).record_id for record in records]

        for record, record_id in zip(records, ids):
            record["Id"] = record_id
        logger.info(f"✅ Local {sobject} inserted: {len(ids)} record(s)")
        return ids

    def update(self, sobject: str, records: list[dict]) -> None:
        self._check_sobject(sobject)
        with self.session_factory.begin() as db:
            for record in records:
                row = self._load(db, sobject, record.get("Id"))
                self._apply(db, sobject, row, record)
        logger.info(f"✅ Local {sobject} updated: {len(records)} record(s)")

    def upsert(
        self, sobject: str, records: list[dict], external_id_field: str = "Id"
    ) -> list[dict]:
        self._check_sobject(sobject)
        results = []
        with self.session_factory.begin() as db:
            for record in records:
                row = self._match(db, sobject, record, external_id_field)
                if row is None:
                    row = self._create_row(db, sobject, record)
                    created = True
                else:
                    self._apply(db, sobject, row, record)
                    created = False
                results.append({"id": row.record_id, "created": created})

        for record, result in zip(records, results):
            record["Id"] = result["id"]
        logger.info(f"✅ Local {sobject} upserted on {external_id_field}: {len(records)} record(s)")
        return results

    def _match(self, db: Session, sobject: str, record: dict, external_id_field: str) -> Optional[StoredRecord]:
        if external_id_field == "Id":
            return self._load(db, sobject, record["Id"]) if record.get("Id") else None

        value = record.get(external_id_field)
        if value in (None, ""):
            raise self._malformed(
                sobject,
                "REQUIRED_FIELD_MISSING",
                f"Upsert key {external_id_field} has no value",
                [external_id_field],
            )
        matches = [r for r in self._rows(db, sobject) if r.fields.get(external_id_field) == value]
        if len(matches) > 1:
            raise SalesforceMoreThanOneRecord(
                self._url(sobject), 300, sobject, [r.record_id for r in matches]
            )
        return matches[0] if matches else None

    def delete(self, sobject: str, record_ids: list[str]) -> None:
        self._check_sobject(sobject)
        with self.session_factory.begin() as db:
            for record_id in record_ids:
                db.delete(self._load(db, sobject, record_id))
        logger.info(f"🗑️ Local {sobject} deleted: {len(record_ids)} record(s)")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(
        self, sobject: str, record_id: str, fields: Optional[Iterable[str]] = None
    ) -> dict:
        self._check_sobject(sobject)
        with self.session_factory() as db:
            record = self._load(db, sobject, record_id).to_dict()
        if fields is None:
            return record
        return {"Id": record["Id"], **{f: record.get(f) for f in fields if f != "Id"}}

    def query(
        self,
        sobject: str,
        fields: Iterable[str],
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        self._check_sobject(sobject)
        field_list = [f for f in fields if f != "Id"]

        with self.session_factory() as db:
            records = [row.to_dict() for row in self._rows(db, sobject)]

        def matches(record: dict) -> bool:
            for field, value in (filters or {}).items():
                if isinstance(value, (list, tuple, set, frozenset)):
                    if record.get(field) not in value:
                        return False
                elif record.get(field) != value:
                    return False
            return True

        selected = [r for r in records if matches(r)]
        if limit is not None:
            selected = selected[:limit]
        return [{"Id": r["Id"], **{f: r.get(f) for f in field_list}} for r in selected]
