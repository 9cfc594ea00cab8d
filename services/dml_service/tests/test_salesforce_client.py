"""
Tests for the Salesforce record store.
The simple-salesforce client is mocked; these check the calls the store
makes and how platform failures come back.
"""
import pytest
from unittest.mock import MagicMock, patch

from simple_salesforce.exceptions import (
    SalesforceMalformedRequest,
    SalesforceRefusedRequest,
    SalesforceResourceNotFound,
)

from services.dml_service.app.adapters.salesforce_client import SalesforceStore

BASE_URL = "https://acme.my.salesforce.com/services/data/v59.0/"


def _ok(*ids):
    return [{"id": i, "success": True, "errors": []} for i in ids]


@pytest.fixture
def sf():
    sf = MagicMock()
    sf.base_url = BASE_URL
    sf.sf_version = "59.0"
    return sf


@pytest.fixture
def store(sf):
    return SalesforceStore(sf=sf)


def _restful_call(sf, index=-1):
    """(path, method, kwargs) of a restful() call the store made."""
    call = sf.restful.call_args_list[index]
    return call.args[0], call.kwargs["method"], call.kwargs


# =============================================================================
# Setup
# =============================================================================

class TestInit:
    def test_uses_given_client(self, store, sf):
        assert store.sf is sf
        assert store.provider == "salesforce"

    def test_missing_credentials(self, monkeypatch):
        for var in (
            "SALESFORCE_INSTANCE_URL",
            "SALESFORCE_ACCESS_TOKEN",
            "SALESFORCE_USERNAME",
            "SALESFORCE_PASSWORD",
            "SALESFORCE_SECURITY_TOKEN",
        ):
            monkeypatch.delenv(var, raising=False)
        with pytest.raises(ValueError):
            SalesforceStore()

    @patch("services.dml_service.app.adapters.salesforce_client.Salesforce")
    def test_password_login(self, mock_salesforce, monkeypatch):
        monkeypatch.delenv("SALESFORCE_INSTANCE_URL", raising=False)
        monkeypatch.delenv("SALESFORCE_ACCESS_TOKEN", raising=False)
        monkeypatch.setenv("SALESFORCE_USERNAME", "dev@example.com")
        monkeypatch.setenv("SALESFORCE_PASSWORD", "secret")
        monkeypatch.setenv("SALESFORCE_SECURITY_TOKEN", "TKN")
        monkeypatch.setenv("SALESFORCE_DOMAIN", "test")

        store = SalesforceStore()

        kwargs = mock_salesforce.call_args.kwargs
        assert kwargs["username"] == "dev@example.com"
        assert kwargs["password"] == "secret"
        assert kwargs["security_token"] == "TKN"
        assert kwargs["domain"] == "test"
        assert store.sf is mock_salesforce.return_value

    @patch("services.dml_service.app.adapters.salesforce_client.Salesforce")
    def test_session_id_login(self, mock_salesforce, monkeypatch):
        monkeypatch.setenv("SALESFORCE_INSTANCE_URL", "https://acme.my.salesforce.com")
        monkeypatch.setenv("SALESFORCE_ACCESS_TOKEN", "00Dxx!token")

        SalesforceStore()

        kwargs = mock_salesforce.call_args.kwargs
        assert kwargs["instance_url"] == "https://acme.my.salesforce.com"
        assert kwargs["session_id"] == "00Dxx!token"


# =============================================================================
# DML
# =============================================================================

class TestInsert:
    def test_single_record_uses_sobject_resource(self, store, sf):
        sf.Account.create.return_value = {"id": "001A", "success": True, "errors": []}
        account = {"Name": "Acme"}

        ids = store.insert("Account", [account])

        sf.Account.create.assert_called_once_with({"Name": "Acme"})
        assert ids == ["001A"]
        assert account["Id"] == "001A"

    def test_many_records_use_one_collection_call(self, store, sf):
        sf.restful.return_value = _ok("00QA", "00QB")
        leads = [{"LastName": "A", "Company": "X"}, {"LastName": "B", "Company": "X"}]

        ids = store.insert("Lead", leads)

        assert sf.restful.call_count == 1
        path, method, kwargs = _restful_call(sf)
        assert (path, method) == ("composite/sobjects", "POST")
        assert kwargs["json"]["allOrNone"] is True
        assert kwargs["json"]["records"][0] == {"attributes": {"type": "Lead"}, "LastName": "A", "Company": "X"}
        assert ids == ["00QA", "00QB"]
        assert [lead["Id"] for lead in leads] == ids

    def test_collection_failure_raises(self, store, sf):
        sf.restful.return_value = [
            {"id": None, "success": False, "errors": [{"statusCode": "REQUIRED_FIELD_MISSING", "message": "Name"}]},
            {"id": None, "success": False, "errors": [{"statusCode": "ALL_OR_NONE_OPERATION_ROLLED_BACK", "message": ""}]},
        ]
        accounts = [{"Industry": "Energy"}, {"Name": "Ok"}]

        with pytest.raises(SalesforceMalformedRequest) as exc:
            store.insert("Account", accounts)
        assert exc.value.status == 400
        assert exc.value.content[0]["statusCode"] == "REQUIRED_FIELD_MISSING"
        assert "Id" not in accounts[1]

    def test_single_record_failure_propagates(self, store, sf):
        sf.Case.create.side_effect = SalesforceRefusedRequest(
            BASE_URL + "sobjects/Case/", 403, "Case",
            [{"errorCode": "INSUFFICIENT_ACCESS_OR_READONLY", "message": "no access"}],
        )
        with pytest.raises(SalesforceRefusedRequest) as exc:
            store.insert("Case", [{"Subject": "x"}])
        assert exc.value.status == 403

    def test_empty_list_makes_no_call(self, store, sf):
        assert store.insert("Case", []) == []
        sf.restful.assert_not_called()
        sf.Case.create.assert_not_called()


class TestUpdate:
    def test_single_record(self, store, sf):
        store.update("Contact", [{"Id": "003A", "LastName": "Byron"}])
        sf.Contact.update.assert_called_once_with("003A", {"LastName": "Byron"})

    def test_many_records_keep_ids(self, store, sf):
        sf.restful.return_value = _ok("006A", "006B")

        store.update("Opportunity", [{"Id": "006A", "StageName": "Won"}, {"Id": "006B", "StageName": "Lost"}])

        path, method, kwargs = _restful_call(sf)
        assert (path, method) == ("composite/sobjects", "PATCH")
        assert [r["Id"] for r in kwargs["json"]["records"]] == ["006A", "006B"]


class TestUpsert:
    def test_mixed_list_is_one_composite_call(self, store, sf):
        sf.restful.return_value = {"compositeResponse": [
            {"referenceId": "existing", "httpStatusCode": 200, "body": _ok("006A")},
            {"referenceId": "new", "httpStatusCode": 200, "body": _ok("006B")},
        ]}
        opps = [{"Id": "006A", "Name": "Old"}, {"Name": "New"}]

        results = store.upsert("Opportunity", opps)

        assert sf.restful.call_count == 1
        path, method, kwargs = _restful_call(sf)
        assert (path, method) == ("composite", "POST")
        assert kwargs["json"]["allOrNone"] is True
        patch_req, post_req = kwargs["json"]["compositeRequest"]
        assert patch_req["method"] == "PATCH"
        assert patch_req["url"] == "/services/data/v59.0/composite/sobjects"
        assert patch_req["body"]["records"][0]["Id"] == "006A"
        assert post_req["method"] == "POST"
        assert "Id" not in post_req["body"]["records"][0]
        assert results == [{"id": "006A", "created": False}, {"id": "006B", "created": True}]
        assert opps[1]["Id"] == "006B"

    def test_mixed_list_failure_writes_nothing(self, store, sf):
        """A failing create rolls back the update sent in the same request."""
        sf.restful.return_value = {"compositeResponse": [
            {"referenceId": "existing", "httpStatusCode": 400,
             "body": [{"errorCode": "PROCESSING_HALTED", "message": "rolled back"}]},
            {"referenceId": "new", "httpStatusCode": 400,
             "body": [{"errorCode": "REQUIRED_FIELD_MISSING", "message": "Name"}]},
        ]}
        opps = [{"Id": "006A", "Name": "A"}, {"Amount": 1}]

        with pytest.raises(SalesforceMalformedRequest) as exc:
            store.upsert("Opportunity", opps)

        assert sf.restful.call_count == 1
        sf.Opportunity.update.assert_not_called()
        sf.Opportunity.create.assert_not_called()
        assert "REQUIRED_FIELD_MISSING" in [e["errorCode"] for e in exc.value.content]
        assert "Id" not in opps[1]

    def test_only_existing_records_update(self, store, sf):
        results = store.upsert("Account", [{"Id": "001A", "Description": "Updated Account"}])

        sf.Account.update.assert_called_once_with("001A", {"Description": "Updated Account"})
        assert results == [{"id": "001A", "created": False}]

    def test_external_id_field_uses_collection_path(self, store, sf):
        sf.restful.return_value = [{"id": "001A", "success": True, "created": True, "errors": []}]
        accounts = [{"External_Id__c": "EXT-1", "Name": "Acme"}]

        results = store.upsert("Account", accounts, external_id_field="External_Id__c")

        path, method, kwargs = _restful_call(sf)
        assert (path, method) == ("composite/sobjects/Account/External_Id__c", "PATCH")
        assert results == [{"id": "001A", "created": True}]
        assert accounts[0]["Id"] == "001A"


class TestDelete:
    def test_single_record(self, store, sf):
        store.delete("Case", ["500A"])
        sf.Case.delete.assert_called_once_with("500A")

    def test_many_records(self, store, sf):
        sf.restful.return_value = _ok("500A", "500B")

        store.delete("Case", ["500A", "500B"])

        path, method, kwargs = _restful_call(sf)
        assert (path, method) == ("composite/sobjects", "DELETE")
        assert kwargs["params"] == {"ids": "500A,500B", "allOrNone": "true"}


# =============================================================================
# Reads
# =============================================================================

class TestReads:
    def test_get_strips_attributes(self, store, sf):
        sf.Account.get.return_value = {
            "attributes": {"type": "Account"},
            "Id": "001A",
            "Name": "Acme",
            "Industry": "Energy",
        }
        assert store.get("Account", "001A") == {"Id": "001A", "Name": "Acme", "Industry": "Energy"}

    def test_get_selected_fields(self, store, sf):
        sf.Account.get.return_value = {"attributes": {"type": "Account"}, "Id": "001A", "Name": "Acme"}

        assert store.get("Account", "001A", ["Name"]) == {"Id": "001A", "Name": "Acme"}
        sf.Account.get.assert_called_once_with("001A", params={"fields": "Id,Name"})

    def test_get_not_found_propagates(self, store, sf):
        sf.Contact.get.side_effect = SalesforceResourceNotFound(
            BASE_URL + "sobjects/Contact/003X", 404, "Contact",
            [{"errorCode": "NOT_FOUND", "message": "gone"}],
        )
        with pytest.raises(SalesforceResourceNotFound):
            store.get("Contact", "003X")

    def test_invalid_sobject_name(self, store, sf):
        with pytest.raises(ValueError):
            store.get("Account/../x", "001A")

    def test_query_builds_soql(self, store, sf):
        sf.query_all.return_value = {
            "totalSize": 1,
            "done": True,
            "records": [{"attributes": {"type": "Account"}, "Id": "001A", "Name": "Acme"}],
        }

        records = store.query("Account", ["Name"], {"Name": "Acme"}, limit=1)

        sf.query_all.assert_called_once_with(
            "SELECT Id, Name FROM Account WHERE Name = 'Acme' ORDER BY CreatedDate, Id LIMIT 1"
        )
        assert records == [{"Id": "001A", "Name": "Acme"}]

    def test_query_returns_every_page(self, store, sf):
        sf.query_all.return_value = {"done": True, "records": [{"Id": "001A"}, {"Id": "001B"}]}

        records = store.query("Account", [])

        assert [r["Id"] for r in records] == ["001A", "001B"]
        assert sf.query_all.call_args.args[0] == "SELECT Id FROM Account ORDER BY CreatedDate, Id"

    def test_query_in_list_is_escaped(self, store, sf):
        sf.query_all.return_value = {"done": True, "records": []}

        store.query("Account", ["Name"], {"Name": ["Acme", "O'Brien"]})

        soql = sf.query_all.call_args.args[0]
        assert soql.startswith("SELECT Id, Name FROM Account WHERE Name IN (")
        assert "'Acme'" in soql
        assert "'O\\'Brien'" in soql
        assert soql.endswith(" ORDER BY CreatedDate, Id")

    def test_query_empty_in_list_skips_call(self, store, sf):
        assert store.query("Account", ["Name"], {"Name": []}) == []
        sf.query_all.assert_not_called()

    def test_query_rejects_bad_field(self, store, sf):
        with pytest.raises(ValueError):
            store.query("Account", ["Name; DELETE"])
        sf.query_all.assert_not_called()
