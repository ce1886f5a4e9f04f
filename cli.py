#!/usr/bin/env python3
import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from src.config import ConfigLoader
from src.config.config_loader import Config
from src.core.entities import EmailPriority, EmailRequest, Platform, PushRequest
from src.core.exceptions import HeraldError
from src.main import HeraldApp


class HeraldCLI:
    """CLI interface for the Herald notification service."""

    def __init__(self, config_file: str = "config.yaml", env_file: str = ".env"):
        self.console = Console()
        self.config_file = config_file
        self.env_file = env_file
        self.app: Optional[HeraldApp] = None
        self.config: Optional[Config] = None

    async def initialize(self):
        """Initialize the CLI with configuration and services."""
        try:
            self.app = HeraldApp(self.config_file, self.env_file)
            await self.app.initialize()
            self._configure_cli_logging()
            await self.app.start()
            self.config = self.app.config

        except Exception as e:
            self.console.print(f"❌ Failed to initialize CLI: {e}", style="red")
            raise

    async def shutdown(self):
        if self.app is not None:
            await self.app.shutdown()

    def _configure_cli_logging(self):
        """Keep the console readable: only warnings and errors from the service."""
        logging.getLogger().setLevel(logging.WARNING)
        for handler in logging.getLogger().handlers:
            handler.setLevel(logging.WARNING)

    async def email_send(self, args) -> bool:
        """Send an email through the dispatcher."""
        request = EmailRequest(
            to=args.to,
            cc=args.cc or [],
            bcc=args.bcc or [],
            subject=args.subject,
            body=args.body,
            html=args.html,
            from_address=args.from_address,
            priority=EmailPriority[args.priority.upper()],
            event_id=args.event_id,
            service_id=args.service_id,
        )

        try:
            if args.async_mode:
                receipt = await self.app.dispatcher.send_email_async(request)
                self.console.print(f"📨 Accepted: {receipt.notification_id}", style="green")
                self.console.print(f"   Status URL: {receipt.status_check_url}")
                await receipt.task
                notification = await self.app.dispatcher.get_email_status(receipt.notification_id)
            else:
                with Progress() as progress:
                    task = progress.add_task("Sending email...", total=100)
                    notification = await self.app.dispatcher.send_email(request)
                    progress.advance(task, 100)

            self._print_notification("Email", notification)
            return notification.status.value == "sent"

        except HeraldError as e:
            self.console.print(f"❌ Email not sent: {e}", style="red")
            return False

    async def push_send(self, args) -> bool:
        """Send a push notification to a device token or to every device of a user."""
        request = PushRequest(
            device_token=args.token,
            title=args.title,
            body=args.body,
            data=self._parse_data(args.data),
            image_url=args.image_url,
            priority=args.priority,
            platform=Platform(args.platform) if args.platform else None,
            user_id=args.user_id,
            event_id=args.event_id,
            service_id=args.service_id,
        )

        try:
            if args.token is None:
                receipts = await self.app.dispatcher.send_push_to_user(request)
                self.console.print(f"📱 Queued for {len(receipts)} device(s)", style="green")
                await asyncio.gather(*(r.task for r in receipts if r.task is not None))
                results = [
                    await self.app.dispatcher.get_push_status(r.notification_id) for r in receipts
                ]
                for notification in results:
                    self._print_notification("Push", notification)
                return all(n.status.value == "sent" for n in results)

            if args.async_mode:
                receipt = await self.app.dispatcher.send_push_async(request)
                self.console.print(f"📱 Accepted: {receipt.notification_id}", style="green")
                await receipt.task
                notification = await self.app.dispatcher.get_push_status(receipt.notification_id)
            else:
                notification = await self.app.dispatcher.send_push(request)

            self._print_notification("Push", notification)
            return notification.status.value == "sent"

        except HeraldError as e:
            self.console.print(f"❌ Push not sent: {e}", style="red")
            return False

    async def push_register(self, user_id: str, token: str, platform: str) -> bool:
        """Register a device token for a user."""
        try:
            device = await self.app.device_tokens.register_token(user_id, token, Platform(platform))
            self.console.print(
                f"✅ Registered {device.platform.value} device {device.id} for {device.user_id}",
                style="green",
            )
            return True
        except (HeraldError, ValueError) as e:
            self.console.print(f"❌ Registration failed: {e}", style="red")
            return False

    async def providers_status(self) -> bool:
        """Show provider availability and circuit breaker state."""
        status = self.app.health_management.get_delivery_status()

        table = Table(title="Delivery Providers")
        table.add_column("Channel", style="cyan")
        table.add_column("Provider", style="magenta")
        table.add_column("Available", style="green")
        table.add_column("Active", style="yellow")
        table.add_column("Priority", style="blue")

        for channel, providers in status["providers"].items():
            for name, info in sorted(providers.items(), key=lambda i: -i[1]["priority"]):
                table.add_row(
                    channel,
                    name,
                    "✅" if info["available"] else "❌",
                    "★" if info["active"] else "",
                    str(info["priority"]),
                )
        self.console.print(table)

        if status["circuit_breakers"]:
            breakers = Table(title="Circuit Breakers")
            breakers.add_column("Name", style="cyan")
            breakers.add_column("State", style="magenta")
            breakers.add_column("Failure Rate", style="red")
            breakers.add_column("Buffered Calls", style="blue")
            for name, stats in status["circuit_breakers"].items():
                breakers.add_row(
                    name,
                    stats["state"],
                    f"{stats['failure_rate']:.1f}%" if stats["failure_rate"] >= 0 else "-",
                    str(stats["buffered_calls"]),
                )
            self.console.print(breakers)

        return True

    async def ratelimit_status(self, service_id: Optional[str]) -> bool:
        """Show the remaining rate limit budget."""
        limiter = self.app.rate_limiter
        if limiter is None:
            self.console.print("ℹ️ Rate limiting is disabled", style="yellow")
            return True

        table = Table(title=f"Rate Limits ({limiter.settings.window_seconds}s window)")
        table.add_column("Scope", style="cyan")
        table.add_column("Limit", style="magenta")
        table.add_column("Remaining", style="green")

        table.add_row(
            "global",
            str(limiter.settings.global_requests_per_minute),
            str(limiter.get_remaining_global()),
        )
        if service_id:
            table.add_row(
                f"service:{service_id}",
                str(limiter.settings.per_service_requests_per_minute),
                str(limiter.get_remaining_for_service(service_id)),
            )
        self.console.print(table)
        return True

    async def ratelimit_reset(self, service_id: Optional[str], reset_global: bool) -> bool:
        """Clear a rate limit window."""
        limiter = self.app.rate_limiter
        if limiter is None:
            self.console.print("ℹ️ Rate limiting is disabled", style="yellow")
            return False

        if service_id:
            limiter.reset_service_limit(service_id)
            self.console.print(f"✅ Reset rate limit for service {service_id}", style="green")
        if reset_global:
            limiter.reset_global_limit()
            self.console.print("✅ Reset global rate limit", style="green")
        if not service_id and not reset_global:
            self.console.print("⚠️ Nothing to reset: pass --service-id or --global", style="yellow")
            return False
        return True

    async def health_check(self) -> bool:
        """Check health of all services."""
        try:
            self.console.print("🏥 Checking service health...")

            with Progress() as progress:
                task = progress.add_task("Checking services...", total=100)
                health_result = await self.app.get_service_health_status()
                progress.advance(task, 100)

            if not health_result["success"]:
                error_msg = health_result.get("error", "Unknown error")
                self.console.print(f"❌ Health check failed: {error_msg}", style="red")
                return False

            table = Table(title="Service Health Check")
            table.add_column("Service", style="cyan")
            table.add_column("Status", style="magenta")
            table.add_column("Details", style="blue")

            for service_name, health_info in health_result["services"].items():
                if health_info["healthy"]:
                    status = "✅ Healthy"
                elif health_info["status"] == "error":
                    status = "⚠️ Error"
                else:
                    status = "❌ Unhealthy"
                table.add_row(service_name.title(), status, str(health_info["details"]))

            self.console.print(table)

            writers = health_result["delivery"]["batch_writers"]
            for name, stats in writers.items():
                self.console.print(
                    f"  {name} writer: queue {stats['queue_size']}/{stats['queue_capacity']}, "
                    f"{stats['items_written']} written, {stats['sync_writes']} sync fallbacks"
                )

            if health_result["overall_healthy"]:
                self.console.print("🎉 All services are healthy!", style="green")
            else:
                self.console.print(
                    f"⚠️ {health_result['healthy_count']}/{health_result['total_count']} services are healthy",
                    style="yellow",
                )

            return health_result["overall_healthy"]

        except Exception as e:
            self.console.print(f"❌ Error during health check: {e}", style="red")
            return False

    def _print_notification(self, label: str, notification) -> None:
        table = Table(title=f"{label} Notification {notification.id}")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="magenta")
        table.add_row("Status", notification.status.value)
        table.add_row(
            "Provider",
            notification.provider_type.value if notification.provider_type else "-",
        )
        table.add_row("Retry Count", str(notification.retry_count))
        if notification.processing_time_ms is not None:
            table.add_row("Processing Time", f"{notification.processing_time_ms}ms")
        if notification.error_message:
            table.add_row("Error", notification.error_message)
        self.console.print(table)

    @staticmethod
    def _parse_data(pairs: Optional[List[str]]) -> Dict[str, str]:
        data = {}
        for pair in pairs or []:
            key, sep, value = pair.partition("=")
            if not sep:
                raise argparse.ArgumentTypeError(f"Invalid data entry (expected KEY=VALUE): {pair}")
            data[key.strip()] = value
        return data


def config_show(console: Console, config_file: str, env_file: str) -> bool:
    """Show the effective configuration, with secrets masked."""
    try:
        config = ConfigLoader(config_file, env_file).load()
    except Exception as e:
        console.print(f"❌ Error loading configuration: {e}", style="red")
        return False

    def mask(value: Optional[str]) -> str:
        if not value:
            return "not set"
        return "***" + value[-4:] if len(value) > 8 else "***"

    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Environment", config.environment)
    table.add_row("Debug Mode", str(config.debug))
    table.add_row("Storage", config.storage_service.type)
    table.add_row("Cache", f"{config.cache.type} ({config.redis_url})")
    table.add_row("Email Provider", f"{config.email.active_provider} (fallback={config.email.fallback_to_priority})")
    table.add_row("SMTP Host", config.email.smtp.host or "not set")
    table.add_row("SendGrid API Key", mask(config.email.sendgrid.api_key))
    table.add_row("Push Provider", f"{config.push.active_provider} (fallback={config.push.fallback_to_priority})")
    table.add_row("FCM Credentials", config.push.fcm.credentials_file or "not set")
    table.add_row("APNs", "enabled" if config.push.apns.enabled else "disabled")
    table.add_row("Web Push", "enabled" if config.push.web.enabled else "disabled")
    table.add_row(
        "Rate Limit",
        f"{config.rate_limit.global_limit.requests_per_minute}/{config.rate_limit.window_seconds}s global, "
        f"{config.rate_limit.per_service.requests_per_minute}/{config.rate_limit.window_seconds}s per service"
        if config.rate_limit.enabled else "disabled",
    )
    table.add_row(
        "Retry (email/push)",
        f"{config.retry.email.max_attempts} / {config.retry.push.max_attempts} attempts",
    )
    table.add_row("Audit Sinks", ", ".join(config.audit.sinks) if config.audit.enabled else "disabled")
    table.add_row("Log Level", config.logging.level)

    console.print(table)
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Herald CLI - Send notifications and inspect the delivery service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli.py email send --to user@example.com --subject "Hi" --body "Hello"
  python cli.py push send --token abc123 --title "Hi" --body "Hello" --platform android
  python cli.py push send --user-id user-1 --title "Hi" --body "Hello"
  python cli.py providers status
  python cli.py ratelimit status --service-id billing
  python cli.py health check
  python cli.py serve --port 8080
        """,
    )

    parser.add_argument("--config", "-c", default="config.yaml", help="Configuration file")
    parser.add_argument("--env", "-e", default=".env", help="Environment file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Email
    email_parser = subparsers.add_parser("email", help="Email operations")
    email_subparsers = email_parser.add_subparsers(dest="email_action")
    send_email = email_subparsers.add_parser("send", help="Send an email")
    send_email.add_argument("--to", action="append", required=True, help="Recipient (repeatable)")
    send_email.add_argument("--cc", action="append", help="CC recipient (repeatable)")
    send_email.add_argument("--bcc", action="append", help="BCC recipient (repeatable)")
    send_email.add_argument("--subject", required=True, help="Subject line")
    send_email.add_argument("--body", required=True, help="Message body")
    send_email.add_argument("--html", action="store_true", help="Body is HTML")
    send_email.add_argument("--from", dest="from_address", help="Sender address")
    send_email.add_argument(
        "--priority", choices=["high", "normal", "low"], default="normal", help="Email priority"
    )
    send_email.add_argument("--event-id", help="Idempotency key")
    send_email.add_argument("--service-id", help="Calling service id")
    send_email.add_argument("--async", dest="async_mode", action="store_true", help="Deliver in the background")

    # Push
    push_parser = subparsers.add_parser("push", help="Push notification operations")
    push_subparsers = push_parser.add_subparsers(dest="push_action")
    send_push = push_subparsers.add_parser("send", help="Send a push notification")
    target = send_push.add_mutually_exclusive_group(required=True)
    target.add_argument("--token", help="Device token")
    target.add_argument("--user-id", help="Send to every active device of this user")
    send_push.add_argument("--title", required=True, help="Notification title")
    send_push.add_argument("--body", required=True, help="Notification body")
    send_push.add_argument("--platform", choices=[p.value for p in Platform], help="Device platform")
    send_push.add_argument("--data", action="append", help="Data entry KEY=VALUE (repeatable)")
    send_push.add_argument("--image-url", help="Image URL")
    send_push.add_argument("--priority", type=int, default=5, help="Priority 1-10 (default: 5)")
    send_push.add_argument("--event-id", help="Idempotency key")
    send_push.add_argument("--service-id", help="Calling service id")
    send_push.add_argument("--async", dest="async_mode", action="store_true", help="Deliver in the background")

    register = push_subparsers.add_parser("register", help="Register a device token")
    register.add_argument("--user-id", required=True, help="Owner of the device")
    register.add_argument("--token", required=True, help="Device token")
    register.add_argument("--platform", required=True, choices=[p.value for p in Platform])

    # Providers
    providers_parser = subparsers.add_parser("providers", help="Delivery provider operations")
    providers_subparsers = providers_parser.add_subparsers(dest="providers_action")
    providers_subparsers.add_parser("status", help="Show provider availability")

    # Rate limits
    ratelimit_parser = subparsers.add_parser("ratelimit", help="Internal rate limit operations")
    ratelimit_subparsers = ratelimit_parser.add_subparsers(dest="ratelimit_action")
    rl_status = ratelimit_subparsers.add_parser("status", help="Show remaining budget")
    rl_status.add_argument("--service-id", help="Also show this service's budget")
    rl_reset = ratelimit_subparsers.add_parser("reset", help="Reset a rate limit window")
    rl_reset.add_argument("--service-id", help="Service whose window is cleared")
    rl_reset.add_argument("--global", dest="reset_global", action="store_true", help="Clear the global window")

    # Health check
    health_parser = subparsers.add_parser("health", help="Service health operations")
    health_subparsers = health_parser.add_subparsers(dest="health_action")
    health_subparsers.add_parser("check", help="Check service health")

    # HTTP API
    serve_parser = subparsers.add_parser("serve", help="Serve the rate limited notification API")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port (default: 8080)")

    # Configuration
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_action")
    config_subparsers.add_parser("show", help="Show current configuration")

    return parser


async def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    if args.command == "config":
        if args.config_action == "show":
            ok = config_show(Console(), args.config, args.env)
            sys.exit(0 if ok else 1)
        parser.print_help()
        return

    cli = HeraldCLI(args.config, args.env)
    ok = True

    try:
        await cli.initialize()

        if args.command == "email":
            if args.email_action == "send":
                ok = await cli.email_send(args)

        elif args.command == "push":
            if args.push_action == "send":
                ok = await cli.push_send(args)
            elif args.push_action == "register":
                ok = await cli.push_register(args.user_id, args.token, args.platform)

        elif args.command == "providers":
            if args.providers_action == "status":
                ok = await cli.providers_status()

        elif args.command == "ratelimit":
            if args.ratelimit_action == "status":
                ok = await cli.ratelimit_status(args.service_id)
            elif args.ratelimit_action == "reset":
                ok = await cli.ratelimit_reset(args.service_id, args.reset_global)

        elif args.command == "health":
            if args.health_action == "check":
                ok = await cli.health_check()

        elif args.command == "serve":
            if cli.app.rate_limiter is None:
                cli.console.print("⚠️  Rate limiting is disabled, requests are not throttled", style="yellow")
            cli.console.print(f"🌐 Serving on http://{args.host}:{args.port}", style="green")
            await cli.app.serve(args.host, args.port)

    except KeyboardInterrupt:
        cli.console.print("\n👋 Goodbye!", style="blue")
    except Exception as e:
        cli.console.print(f"❌ Fatal error: {e}", style="red")
        ok = False
    finally:
        await cli.shutdown()

    if not ok:
        sys.exit(1)


def cli_entry_point():
    """Entry point for the installed herald command."""
    asyncio.run(main())


if __name__ == "__main__":
    asyncio.run(main())
