"""
JMAP Connector - Main Entry Point
디바이스 플로우 로그인과 메일함/받은편지함 조회를 위한 실행 파일입니다.

사용법:
    python main.py login
    python main.py mailboxes
    python main.py inbox --limit 20
"""

import argparse
import asyncio
import os
import sys
import logging

from dotenv import load_dotenv

from auth import DeviceFlowClient, JmapOAuthConfig, OAuthDiscovery, SqliteTokenStore
from auth.oauth_types import DeviceFlowResult
from core.errors import ErrorCategory, JmapConnectorError, classify_error
from jmap import JmapOAuthClient

# Load environment variables (프로젝트 루트 기준)
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(_env_path, encoding="utf-8-sig")

logger = logging.getLogger(__name__)


def _print_header(title: str):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def _resolve_identity(config: JmapOAuthConfig, store: SqliteTokenStore) -> str:
    """설정된 identity, 없으면 저장된 가장 최근 identity"""
    if config.identity:
        return config.identity
    identities = store.list_identities(config.server_url)
    if not identities:
        raise ValueError("No stored login. Run 'python main.py login' first or set JMAP_IDENTITY.")
    return identities[0]


async def login(config: JmapOAuthConfig, store: SqliteTokenStore) -> int:
    """디바이스 플로우로 로그인하고 토큰 저장"""
    identity = config.identity or input("Account (email): ").strip()
    if not identity:
        print("[ERROR] Account is required")
        return 1

    discovery = OAuthDiscovery()
    try:
        metadata = await discovery.discover(config.server_url)
    finally:
        await discovery.close()

    device_flow = DeviceFlowClient(metadata, config.client_id)
    try:
        grant = await device_flow.request_device_code(config.scopes)

        _print_header("JMAP Device Login")
        print(f"Open:  {grant.verification_uri_complete or grant.verification_uri}")
        print(f"Code:  {grant.user_code}")
        print(f"Expires in {grant.expires_in} seconds")
        print("=" * 60)
        print("\nWaiting for authorization...")

        def on_state_change(result: DeviceFlowResult):
            logger.info(f"Device flow finished: {result.state.value}")

        result = await device_flow.start_polling(grant, on_state_change)
    finally:
        await device_flow.close()

    if not result.is_success:
        error = result.error
        print(f"\n[ERROR] Login failed: {error.message if error else result.state.value}")
        return 1

    store.save(config.server_url, identity, result.token)
    print(f"\n[OK] Logged in as {identity}")
    return 0


async def _open_client(config: JmapOAuthConfig, store: SqliteTokenStore) -> JmapOAuthClient:
    identity = _resolve_identity(config, store)

    discovery = OAuthDiscovery()
    try:
        metadata = await discovery.discover(config.server_url)
    finally:
        await discovery.close()

    return JmapOAuthClient(config.server_url, identity, "", store, metadata, config.client_id)


async def show_mailboxes(config: JmapOAuthConfig, store: SqliteTokenStore) -> int:
    """메일함 목록 출력"""
    async with await _open_client(config, store) as client:
        mailboxes = await client.list_mailboxes()

    _print_header(f"Mailboxes ({len(mailboxes)})")
    for mailbox in sorted(mailboxes, key=lambda m: (m.sort_order or 0, m.name)):
        role = f"[{mailbox.role}]" if mailbox.role else ""
        print(f"{mailbox.name:<30} {role:<12} unread={mailbox.unread_emails or 0} total={mailbox.total_emails or 0}")
    print("=" * 60)
    return 0


async def show_inbox(config: JmapOAuthConfig, store: SqliteTokenStore, limit: int) -> int:
    """받은편지함 최신 메일 출력"""
    async with await _open_client(config, store) as client:
        mailboxes = await client.list_mailboxes()
        inbox = next((m for m in mailboxes if (m.role or "").lower() == "inbox"), None)
        if inbox is None:
            print("[ERROR] No inbox mailbox found")
            return 1

        query = await client.query_emails(mailbox_id=inbox.id, limit=limit)
        emails = await client.fetch_emails(query.ids)

    _print_header(f"Inbox ({query.total if query.total is not None else len(emails)} messages)")
    for email in emails:
        summary = email.to_summary()
        marker = "*" if summary.is_unread else " "
        clip = " [att]" if summary.has_attachments else ""
        received = summary.received_at.strftime("%Y-%m-%d %H:%M") if summary.received_at else ""
        print(f"{marker} {received:<16} {summary.sender[:28]:<28} {summary.subject}{clip}")
    print("=" * 60)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="JMAP mail client with OAuth device login")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("login", help="Sign in with the OAuth device flow")
    subparsers.add_parser("mailboxes", help="List mailboxes")

    inbox_parser = subparsers.add_parser("inbox", help="Show newest inbox messages")
    inbox_parser.add_argument("--limit", "-n", type=int, default=20, help="Number of messages (default: 20)")

    return parser


async def main(argv=None) -> int:
    """메인 함수"""
    args = build_parser().parse_args(argv)

    config = JmapOAuthConfig(load_env=False)

    # Configure logging
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not config.is_configured():
        print("[ERROR] JMAP_SERVER_URL is not set (.env or environment)")
        return 2

    store = SqliteTokenStore(config.token_db_path)

    try:
        if args.command == "login":
            return await login(config, store)
        if args.command == "mailboxes":
            return await show_mailboxes(config, store)
        return await show_inbox(config, store, args.limit)

    except JmapConnectorError as e:
        logger.error(f"Error: {e!r}")
        category = classify_error(e)
        if category is ErrorCategory.REAUTHENTICATE:
            print("\n[ERROR] Session expired. Run 'python main.py login' again.")
        elif category is ErrorCategory.RETRY_LATER:
            print(f"\n[WARN] Temporary failure, please retry later: {e}")
        else:
            print(f"\n[ERROR] {e}")
        return 1
    except ValueError as e:
        print(f"\n[ERROR] {e}")
        return 1


def run():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
