"""
Abstract Base Adapter for CRM record stores.
Every store (Salesforce, local SQL) must implement this interface.
"""
from abc import ABC, abstractmethod
from typing import Iterable, Optional


class RecordStore(ABC):
    """
    Abstract record store interface.

    Each DML method is a single all-or-none call against the store: either
    every record in the list is written or none is. Failures are raised as
    simple-salesforce exceptions (SalesforceError subclasses carrying the
    platform status and error payload) and are never caught here.
    """

    provider: str = "none"

    @abstractmethod
    def insert(self, sobject: str, records: list[dict]) -> list[str]:
        """
        Create records of one sObject type.

        Args:
            sobject: API name of the object, e.g. "Account".
            records: Field dicts. Each dict gets its new "Id" written back.

        Returns:
            The generated ids, in input order.
        """
        ...

    @abstractmethod
    def update(self, sobject: str, records: list[dict]) -> None:
        """
        Update existing records. Each dict must carry "Id"; only the
        fields present in the dict are written.
        """
        ...

    @abstractmethod
    def upsert(
        self, sobject: str, records: list[dict], external_id_field: str = "Id"
    ) -> list[dict]:
        """
        Insert records that don't exist yet, update the ones that do.

        Args:
            sobject: API name of the object.
            records: Field dicts. New ids are written back into "Id".
            external_id_field: Field used to match existing records.
                With "Id", records that carry an Id are updated and the
                rest are created.

        Returns:
            One {"id": ..., "created": bool} per record, in input order.
        """
        ...

    @abstractmethod
    def delete(self, sobject: str, record_ids: list[str]) -> None:
        """Delete records by id."""
        ...

    @abstractmethod
    def get(
        self, sobject: str, record_id: str, fields: Optional[Iterable[str]] = None
    ) -> dict:
        """
        Fetch one record by id.

        Raises:
            SalesforceResourceNotFound if no such record exists.
        """
        ...

    @abstractmethod
    def query(
        self,
        sobject: str,
        fields: Iterable[str],
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Fetch records of one type matching a filter.

        Args:
            sobject: API name of the object.
            fields: Fields to return ("Id" is always included).
            filters: Field -> value for equality, or field -> list/set/tuple
                for membership. All conditions must hold.
            limit: Maximum number of records to return.

        Returns:
            A list of field dicts, each with "Id".
        """
        ...
