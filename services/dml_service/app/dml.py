"""
DML operations on the CRM object model (Account, Contact, Opportunity, Lead, Case).

Each function is standalone: it builds or fetches records, issues its
insert/update/upsert/delete calls against the given RecordStore, and returns.
Store errors (required fields, bad ids, permissions, outages) propagate to
the caller untouched.
"""
import logging
from datetime import date, timedelta

from .adapters.base import RecordStore

logger = logging.getLogger(__name__)

CLOSE_DATE_OFFSET = timedelta(days=90)


def _close_date() -> str:
    """Opportunity close date three months out, in the platform's date format."""
    return (date.today() + CLOSE_DATE_OFFSET).isoformat()


def _distinct(values) -> list:
    """Drop repeats, keeping first-seen order."""
    return list(dict.fromkeys(values))


# =============================================================================
# Insert
# =============================================================================

def insert_new_account(store: RecordStore) -> str:
    """Insert an Account with hard-coded fields and return its id."""
    account = {"Name": "Cloud Kicks", "Industry": "Apparel"}
    store.insert("Account", [account])
    logger.info(f"✅ Inserted account {account['Id']}")
    return account["Id"]


def create_account(store: RecordStore, name: str, industry: str) -> str:
    """Insert an Account with the given name and industry and return its id."""
    account = {"Name": name, "Industry": industry}
    store.insert("Account", [account])
    logger.info(f"✅ Created account '{name}' ({account['Id']})")
    return account["Id"]


def insert_new_contact(store: RecordStore, account_id: str) -> str:
    """Insert a Contact under the given Account and return its id."""
    contact = {"FirstName": "Ada", "LastName": "Lovelace", "AccountId": account_id}
    store.insert("Contact", [contact])
    logger.info(f"✅ Inserted contact {contact['Id']} for account {account_id}")
    return contact["Id"]


# =============================================================================
# Update
# =============================================================================

def update_contact_last_name(store: RecordStore, contact_id: str, new_last_name: str) -> None:
    """Fetch the Contact, change its LastName and write it back."""
    contact = store.get("Contact", contact_id, ["LastName"])
    contact["LastName"] = new_last_name
    store.update("Contact", [contact])
    logger.info(f"✅ Contact {contact_id} last name -> '{new_last_name}'")


def update_opportunity_stage(store: RecordStore, opp_id: str, new_stage: str) -> None:
    """Fetch the Opportunity, move it to the new stage and write it back."""
    opportunity = store.get("Opportunity", opp_id, ["StageName"])
    opportunity["StageName"] = new_stage
    store.update("Opportunity", [opportunity])
    logger.info(f"✅ Opportunity {opp_id} stage -> '{new_stage}'")


def update_account_fields(
    store: RecordStore, account_id: str, new_name: str, new_industry: str
) -> None:
    """
    Fetch the Account, change its Name and Industry, and write those two
    fields back. Every other field keeps its stored value.
    """
    account = store.get("Account", account_id, ["Name", "Industry"])
    account["Name"] = new_name
    account["Industry"] = new_industry
    store.update("Account", [account])
    logger.info(f"✅ Account {account_id} -> '{new_name}' / '{new_industry}'")


# =============================================================================
# Upsert
# =============================================================================

def upsert_opportunity_list(store: RecordStore, opportunities: list[dict]) -> list[dict]:
    """
    Set stage, close date and amount on every opportunity, then upsert them
    all in one call: ones with an Id are updated, the rest are created.
    """
    for opportunity in opportunities:
        opportunity["StageName"] = "Qualification"
        opportunity["CloseDate"] = _close_date()
        opportunity["Amount"] = 50000
    store.upsert("Opportunity", opportunities)
    logger.info(f"✅ Upserted {len(opportunities)} opportunities")
    return opportunities


def upsert_opportunities(
    store: RecordStore, account_name: str, opp_names: list[str]
) -> list[dict]:
    """
    Make sure the named Account has one Opportunity per distinct name.

    The Account is looked up by name and inserted if missing. Existing
    opportunities on it with a matching name are reused; missing ones are
    built fresh. Everything is written with a single upsert.
    """
    matches = store.query("Account", ["Name"], {"Name": account_name}, limit=1)
    if matches:
        account_id = matches[0]["Id"]
    else:
        account_id = _insert_account(store, account_name)

    names = _distinct(opp_names)
    existing = {
        opp["Name"]: opp
        for opp in reversed(
            store.query(
                "Opportunity",
                ["Name", "StageName", "CloseDate", "AccountId"],
                {"AccountId": account_id, "Name": names},
            )
        )
    }

    opportunities = []
    for name in names:
        opportunity = existing.get(name) or {
            "Name": name,
            "StageName": "Prospecting",
            "CloseDate": _close_date(),
        }
        opportunity["AccountId"] = account_id
        opportunities.append(opportunity)

    store.upsert("Opportunity", opportunities)
    logger.info(f"✅ Upserted {len(opportunities)} opportunities on '{account_name}'")
    return opportunities


def _insert_account(store: RecordStore, account_name: str) -> str:
    account = {"Name": account_name}
    store.insert("Account", [account])
    return account["Id"]


def upsert_account(store: RecordStore, account_name: str) -> dict:
    """
    Upsert an Account keyed on its name.

    If an Account with that name exists, its Description becomes
    "Updated Account"; otherwise a new Account is built with Description
    "New Account". Returns the upserted record, Id included.
    """
    matches = store.query("Account", ["Name", "Description"], {"Name": account_name}, limit=1)
    if matches:
        account = matches[0]
        account["Description"] = "Updated Account"
    else:
        account = {"Name": account_name, "Description": "New Account"}

    store.upsert("Account", [account])
    logger.info(f"✅ Upserted account '{account_name}' ({account['Id']})")
    return account


def upsert_accounts_with_contacts(store: RecordStore, contacts: list[dict]) -> list[dict]:
    """
    Link each contact to the Account named after its LastName.

    Existing Accounts are found with one query over the distinct names; the
    missing ones are inserted in one call. Each contact gets the AccountId
    of its name and the contacts are upserted together.
    """
    names = _distinct(contact["LastName"] for contact in contacts)

    account_ids = {}
    for account in store.query("Account", ["Name"], {"Name": names}):
        # First match wins when the org already holds duplicates.
        account_ids.setdefault(account["Name"], account["Id"])

    new_accounts = [{"Name": name} for name in names if name not in account_ids]
    if new_accounts:
        store.insert("Account", new_accounts)
        for account in new_accounts:
            account_ids[account["Name"]] = account["Id"]

    for contact in contacts:
        contact["AccountId"] = account_ids[contact["LastName"]]

    store.upsert("Contact", contacts)
    logger.info(
        f"🔗 Linked {len(contacts)} contacts to {len(names)} accounts "
        f"({len(new_accounts)} new)"
    )
    return contacts


# =============================================================================
# Delete
# =============================================================================

def insert_and_delete_leads(store: RecordStore, lead_names: list[str]) -> list[str]:
    """Insert one Lead per name, then delete them all. Returns the deleted ids."""
    leads = [{"LastName": name, "Company": "Cloud Kicks"} for name in lead_names]
    ids = store.insert("Lead", leads)
    store.delete("Lead", ids)
    logger.info(f"🗑️ Inserted and deleted {len(ids)} leads")
    return ids


def delete_cases(store: RecordStore, account_id: str, num_of_cases: int) -> list[str]:
    """Insert num_of_cases Cases on the Account, then delete them. Returns the deleted ids."""
    cases = [
        {
            "Subject": f"Case {i + 1}",
            "Status": "New",
            "Origin": "Web",
            "AccountId": account_id,
        }
        for i in range(num_of_cases)
    ]
    ids = store.insert("Case", cases)
    store.delete("Case", ids)
    logger.info(f"🗑️ Inserted and deleted {len(ids)} cases on account {account_id}")
    return ids
