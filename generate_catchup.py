import argparse
import os
import sys
from datetime import date, timedelta

from dailyflow.controller import DeliverableController
from dailyflow.logging_setup import setup_logging
from dailyflow.store import NotAuthenticated, StoreError, get_store
from dailyflow.text import TextService

DEFAULT_DAYS_BACK = 14


def format_history_md(project_name, history, days):
    """Formats project history entries into a Markdown cheat sheet."""
    md = f"# Catch-up: {project_name} (Last {days} Days)\n\n"
    for entry in history:
        d = entry.deliverable
        status = "Done" if d.is_done else "Pending"
        md += f"## {d.date} · {d.display_title} ({status})\n"
        for line in (d.structured_text or d.raw_text).splitlines():
            if line.strip():
                md += f"  {line}\n"
        for report in entry.reports:
            md += f"  *   **Report {report.created_at[:10]}:**\n"
            for line in (report.structured_text or report.raw_text).splitlines():
                if line.strip():
                    md += f"      {line}\n"
        md += "\n"
    return md


def main():
    parser = argparse.ArgumentParser(description="Print a project's recent deliverables or an AI catch-up summary.")
    parser.add_argument("-p", "--project", required=True, help="Project name (case-insensitive).")
    parser.add_argument("-d", "--days", type=int, default=DEFAULT_DAYS_BACK,
                        help=f"How many days back to include in the history (default: {DEFAULT_DAYS_BACK}).")
    parser.add_argument("--summary", action="store_true",
                        help="Generate an AI catch-up summary instead of the plain history.")
    parser.add_argument("--email", default=os.environ.get("DAILYFLOW_EMAIL"),
                        help="Account email (default: $DAILYFLOW_EMAIL).")
    parser.add_argument("--password", default=os.environ.get("DAILYFLOW_PASSWORD"),
                        help="Account password (default: $DAILYFLOW_PASSWORD).")
    parser.add_argument("--store", choices=["local", "supabase"], default=None,
                        help="Data store backend (default: $STORE_BACKEND or local).")
    args = parser.parse_args()

    # Keep stdout clean for the Markdown output
    setup_logging(console_level="WARNING")

    if not args.email or not args.password:
        print("Error: --email and --password (or DAILYFLOW_EMAIL / DAILYFLOW_PASSWORD) are required.", file=sys.stderr)
        sys.exit(2)

    # 1. Sign in
    store = get_store(args.store)
    try:
        session = store.sign_in(args.email, args.password)
    except NotAuthenticated as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except StoreError as e:
        print(f"Error: could not reach the data store: {e}", file=sys.stderr)
        sys.exit(1)

    controller = DeliverableController(
        store,
        TextService.from_config(access_token=session.access_token),
        notify=lambda level, message: print(f"{level.title()}: {message}", file=sys.stderr),
    )

    # 2. Load projects and find the requested one
    if controller.refresh(session) is None:
        sys.exit(1)
    profile = controller.load_profile(session)
    if profile and profile.llm_api_key:
        controller.text_service = TextService.from_config(
            api_key=profile.llm_api_key, access_token=session.access_token
        )

    target = args.project.lower()
    project = next((p for p in controller.projects if p.name.lower() == target), None)
    if project is None:
        names = ", ".join(p.name for p in controller.projects) or "none"
        print(f"Error: no project named '{args.project}' (available: {names}).", file=sys.stderr)
        sys.exit(1)

    # 3. Summary or history
    if args.summary:
        summary = controller.catch_up_summary(session, project.id)
        if not summary:
            sys.exit(1)
        print(f"# Catch-up Summary: {project.name}\n")
        print(summary)
        return

    cutoff = (date.today() - timedelta(days=args.days)).isoformat()
    history = [h for h in controller.project_history(session, project.id) if h.deliverable.date >= cutoff]
    if not history:
        print(f"# Catch-up: {project.name}\n")
        print(f"No deliverables found in the last {args.days} days.")
        sys.exit(0)

    print(format_history_md(project.name, history, args.days))


if __name__ == "__main__":
    main()
