"""Script to create the Entities and Balance Sheet databases in Notion."""
import sys

from notion_client import Client

import config

ACCOUNT_OPTIONS = ["Everyday", "Savings", "Credit Card", "Amex"]


def create_entities_database(client: Client, parent_page_id: str) -> str:
    """Create the Entities database the matcher resolves counterparties against."""
    print("Creating Entities database...")

    database = client.databases.create(
        parent={"type": "page_id", "page_id": parent_page_id},
        title=[{"type": "text", "text": {"content": "Entities"}}],
        properties={
            "Name": {
                "title": {}
            },
            "Aliases": {
                "rich_text": {}
            },
            "Default Transaction Type": {
                "select": {
                    "options": [
                        {"name": "Expense", "color": "red"},
                        {"name": "Transfer", "color": "blue"},
                        {"name": "Income", "color": "green"}
                    ]
                }
            },
            "Default Category": {
                "multi_select": {"options": []}
            }
        }
    )
    return database["id"]


def create_balance_sheet_database(client: Client, parent_page_id: str, entities_db_id: str) -> str:
    """Create the Balance Sheet database imported transactions are written to."""
    print("Creating Balance Sheet database...")

    database = client.databases.create(
        parent={"type": "page_id", "page_id": parent_page_id},
        title=[{"type": "text", "text": {"content": "Balance Sheet"}}],
        properties={
            "Description": {
                "title": {}
            },
            "Account": {
                "select": {
                    "options": [{"name": name} for name in ACCOUNT_OPTIONS]
                }
            },
            "Amount": {
                "number": {"format": "dollar"}
            },
            "Date": {
                "date": {}
            },
            "Type": {
                "select": {
                    "options": [
                        {"name": "Expense", "color": "red"},
                        {"name": "Transfer", "color": "blue"},
                        {"name": "Income", "color": "green"}
                    ]
                }
            },
            "Entity": {
                "relation": {
                    "database_id": entities_db_id,
                    "single_property": {}
                }
            },
            "Location": {
                "select": {"options": []}
            },
            "Online": {
                "checkbox": {}
            },
            "Raw Row": {
                "rich_text": {}
            },
            # Deduplication looks rows up by this
            "Checksum": {
                "rich_text": {}
            }
        }
    )
    return database["id"]


def extract_page_id(url_or_id: str) -> str:
    """Extract page ID from Notion URL or return as-is if already an ID."""
    # If it's a URL, extract the ID
    if "notion.so" in url_or_id or "notion.site" in url_or_id:
        # URL format: https://www.notion.so/Page-Name-abc123def456
        # or: https://www.notion.so/workspace/abc123def456
        parts = url_or_id.rstrip("/").split("-")
        if len(parts) > 1:
            page_id = parts[-1].split("?")[0]
        else:
            page_id = url_or_id.split("/")[-1].split("?")[0]

        # Format as UUID if needed (add hyphens)
        if len(page_id) == 32:
            page_id = f"{page_id[:8]}-{page_id[8:12]}-{page_id[12:16]}-{page_id[16:20]}-{page_id[20:]}"

        return page_id

    return url_or_id


if __name__ == "__main__":
    if not config.NOTION_TOKEN:
        print("❌ Error: NOTION_TOKEN not set in .env file")
        sys.exit(1)

    if len(sys.argv) < 2:
        print("Usage: python setup_notion.py <page_url_or_id>")
        print("\nExample:")
        print("  python setup_notion.py https://www.notion.so/Finance-abc123def456")
        sys.exit(1)

    page_id = extract_page_id(sys.argv[1])
    print(f"Using parent page ID: {page_id}")

    client = Client(auth=config.NOTION_TOKEN)
    try:
        entities_id = create_entities_database(client, page_id)
        balance_sheet_id = create_balance_sheet_database(client, page_id, entities_id)
    except Exception as e:
        print(f"\n❌ Error: {e}")
        print("\nMake sure:")
        print("1. The page exists in Notion")
        print("2. You've shared the page with your integration")
        print("3. Your NOTION_TOKEN is correct")
        sys.exit(1)

    print("\n✅ Databases created successfully!")
    print("\nAdd these to your .env file:")
    print(f"NOTION_ENTITIES_DB_ID={entities_id}")
    print(f"NOTION_BALANCE_SHEET_ID={balance_sheet_id}")
