"""
Resonext command line.

Usage:
    resonext setup
    resonext signup --name NAME --email EMAIL
    resonext signin --email EMAIL
    resonext signout
    resonext status
    resonext profile list|create|select|delete|edit|import-cv|add-sample
    resonext discover universities --country COUNTRY [--state STATE]
    resonext discover professors --university NAME [--department D] [--interest I] [--more N]
    resonext programs --university NAME | --country C [--state S] [--keywords K]
    resonext email draft PROFESSOR_ID [--paper P ...]
    resonext email manual --name N --university U [--research-focus F]
    resonext email revise PROFESSOR_ID --instruction TEXT
    resonext sop list|show|generate|revise|delete
    resonext saved professors|programs|add|update|delete|program-status|export
    resonext theme light|dark

Examples:
    resonext signin --email ada@example.edu
    resonext profile edit --name "Ada Lovelace" --major "Mathematics"
    resonext discover professors --university "ETH Zurich" --interest "robotics" --more 1
    resonext saved export --output professors.csv
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from resonext.coordinator import ResonextApp
from resonext.models.config import AppConfig
from resonext.models.professor import Outcome, ProfessorProfile
from resonext.models.program import ApplicationStatus
from resonext.models.university import Tier
from resonext.session import SessionState
from resonext.utils.credential_manager import CredentialManager
from resonext.utils.errors import ConfigurationError, ResonextError
from resonext.utils.logger import configure_logging

console = Console()

Handler = Callable[[ResonextApp, argparse.Namespace], Awaitable[int]]

_MIME_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".txt": "text/plain",
}

_PROFILE_FIELDS = (
    "name",
    "research_interests",
    "relevant_coursework",
    "academic_summary",
    "work_experience",
    "conferences",
    "portfolio",
    "future_goals",
    "demo_sop",
)


def _mime_type(path: Path) -> str:
    return _MIME_TYPES.get(path.suffix.lower(), "application/octet-stream")


def _fail(message: str) -> int:
    console.print(f"[red][X] {message}[/red]")
    return 1


# ── Auth ──


async def cmd_signup(app: ResonextApp, args: argparse.Namespace) -> int:
    password = Prompt.ask("Password", password=True)
    session = await app.sign_up(args.name, args.email, password)
    if session is None:
        console.print("[yellow]Check your email to confirm your account.[/yellow]")
        return 0
    console.print(f"[green][+] Signed up as {session.email}[/green]")
    return 0


async def cmd_signin(app: ResonextApp, args: argparse.Namespace) -> int:
    password = Prompt.ask("Password", password=True)
    session = await app.sign_in(args.email, password)
    console.print(f"[green][+] Signed in as {session.email}[/green]")
    return 0


async def cmd_signout(app: ResonextApp, args: argparse.Namespace) -> int:
    await app.sign_out()
    console.print("[green][+] Signed out[/green]")
    return 0


async def cmd_status(app: ResonextApp, args: argparse.Namespace) -> int:
    session = app.session
    document = session.document
    table = Table(title="Account", show_header=False)
    table.add_row("Signed in as", session.account_id or "-")
    table.add_row("Session", session.state.value)
    table.add_row("Theme", app.state.theme)
    if session.is_ready:
        active = session.active_profile
        table.add_row("Active profile", active.profile_name if active else "-")
        table.add_row("Profiles", str(len(document.profiles)))
        table.add_row("Saved professors", str(len(document.saved_professors)))
        table.add_row("Saved programs", str(len(document.saved_programs)))
        table.add_row("SOPs", str(len(document.sops)))
        table.add_row("Version", str(document.version))
    if session.load_error:
        table.add_row("Load error", session.load_error)
    console.print(table)
    return 0


# ── Profiles ──


async def cmd_profile(app: ResonextApp, args: argparse.Namespace) -> int:
    manager = app.profiles
    action = args.profile_action

    if action == "create":
        profile = manager.create_profile(args.profile_name)
        console.print(f"[green][+] Created {profile.profile_name} ({profile.id})[/green]")
    elif action == "select":
        profile = manager.select_active(args.profile_id)
        console.print(f"[green][+] Active profile: {profile.profile_name}[/green]")
    elif action == "delete":
        manager.delete_profile(args.profile_id)
        console.print("[green][+] Profile deleted[/green]")
    elif action == "edit":
        fields = {
            key: getattr(args, key)
            for key in _PROFILE_FIELDS
            if getattr(args, key) is not None
        }
        if args.profile_name is not None:
            fields["profile_name"] = args.profile_name
        manager.update_draft(**fields)
        for kind in ("bachelor", "master"):
            degree = {
                key: getattr(args, f"{kind}_{key}")
                for key in ("university", "major", "gpa")
                if getattr(args, f"{kind}_{key}") is not None
            }
            if degree:
                manager.update_degree(kind, **degree)
        manager.save_draft()
        console.print("[green][+] Profile saved[/green]")
    elif action == "import-cv":
        path = Path(args.path)
        manager.attach_cv(path.read_bytes(), _mime_type(path), path.name)
        with console.status("Reading CV..."):
            ok = await manager.extract_from_cv()
        if not ok:
            manager.save_draft()
            return _fail(manager.error or "CV extraction failed")
        manager.save_draft()
        console.print("[green][+] Profile filled from CV[/green]")
    elif action == "add-sample":
        path = Path(args.path)
        with console.status("Reading sample SOP..."):
            sample = await manager.add_sample_sop_file(
                path.read_bytes(), _mime_type(path), path.name
            )
        if sample is None:
            return _fail(manager.error or "Could not read sample SOP")
        manager.save_draft()
        console.print(f"[green][+] Added sample SOP {sample.id}[/green]")

    _print_profiles(app)
    return 0


def _print_profiles(app: ResonextApp) -> None:
    active_id = app.session.document.active_profile_id
    table = Table(title="Profiles")
    table.add_column("")
    table.add_column("Name")
    table.add_column("Applicant")
    table.add_column("Major")
    table.add_column("Complete")
    table.add_column("ID", style="dim")
    for profile in app.profiles.profiles:
        table.add_row(
            "*" if profile.id == active_id else "",
            profile.profile_name,
            profile.name,
            profile.bachelor.major,
            "yes" if profile.is_complete else "no",
            profile.id,
        )
    console.print(table)


# ── Discovery ──


async def cmd_discover(app: ResonextApp, args: argparse.Namespace) -> int:
    flow = app.discovery
    flow.search_profile_id = args.profile

    if args.discover_action == "universities":
        flow.country_query = args.country
        flow.state_query = args.state or ""
        with console.status("Searching universities..."):
            ok = await flow.find_universities()
        if not ok:
            return _fail(flow.error or "University search failed")
        for tier in Tier:
            table = Table(title=f"{tier.value.title()} tier")
            table.add_column("University")
            table.add_column("US News")
            table.add_column("QS")
            for university in flow.universities.tier(tier):
                table.add_row(
                    university.name,
                    university.us_news_ranking or "-",
                    university.qs_ranking or "-",
                )
            console.print(table)
        _print_citations(flow.universities.citations)
        return 0

    flow.university_query = args.university
    flow.department_query = args.department or ""
    flow.interest_query = args.interest or ""
    with console.status("Searching professors..."):
        ok = await flow.find_professors()
        for _ in range(args.more):
            if ok:
                ok = await flow.load_more_professors()
    if not ok and not flow.professors:
        return _fail(flow.error or "Professor search failed")

    table = Table(title=f"Professors at {flow.selected_university}")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Department")
    table.add_column("Research")
    table.add_column("Saved")
    for professor in flow.professors:
        table.add_row(
            professor.id,
            professor.name,
            professor.department,
            professor.research_summary,
            "yes" if app.saved.is_professor_saved(professor.id) else "",
        )
    console.print(table)
    _print_citations(flow.citations)

    if args.save:
        for professor in flow.professors:
            app.saved.save_professor(professor)
        console.print(f"[green][+] Saved {len(flow.professors)} professor(s)[/green]")
    if flow.error:
        console.print(f"[yellow]{flow.error}[/yellow]")
    return 0


async def cmd_programs(app: ResonextApp, args: argparse.Namespace) -> int:
    search = app.programs
    search.search_profile_id = args.profile
    with console.status("Searching programs..."):
        if args.university:
            ok = await search.search_university(args.university, args.keywords)
        else:
            ok = await search.search_broadly(args.country, args.state, args.keywords)
            for _ in range(args.more):
                if ok:
                    ok = await search.load_more()
    if search.results is None:
        return _fail(search.error or "Program search failed")

    index = 0
    listed = []
    for university in search.visible_universities():
        title = university.university_name
        if university.tier is not None:
            title += f" ({university.tier.value} tier)"
        table = Table(title=title)
        table.add_column("#")
        table.add_column("Program")
        table.add_column("Degree")
        table.add_column("Deadlines")
        table.add_column("Saved")
        for program in university.recommended_programs:
            index += 1
            listed.append((program, university.university_name))
            table.add_row(
                str(index),
                program.program_name,
                program.degree_type,
                "; ".join(
                    f"{d.intake}: {d.deadline}" for d in program.application_deadlines
                ),
                "yes" if search.is_saved(program, university.university_name) else "",
            )
        console.print(table)
    _print_citations(search.results.citations)

    for number in args.save or []:
        if not 1 <= number <= len(listed):
            return _fail(f"No program #{number}")
        program, university_name = listed[number - 1]
        saved = search.toggle_save(program, university_name)
        verb = "Saved" if saved else "Unsaved"
        console.print(f"[green][+] {verb} {program.program_name}[/green]")
    return 0


def _print_citations(citations: list[Any]) -> None:
    if not citations:
        return
    console.print("[dim]Sources:[/dim]")
    for citation in citations:
        console.print(f"[dim]  {citation.title or citation.uri} <{citation.uri}>[/dim]")


# ── Email ──


async def cmd_email(app: ResonextApp, args: argparse.Namespace) -> int:
    generator = app.emails
    action = args.email_action

    with console.status("Drafting email..."):
        if action == "draft":
            saved = await generator.analyze_saved(
                args.professor_id, args.paper, args.profile
            )
        elif action == "manual":
            saved = await generator.generate_and_save_manual(
                ProfessorProfile(
                    name=args.name,
                    university=args.university,
                    department=args.department or "",
                    email=args.professor_email or "",
                    lab_website=args.lab_website or "",
                    research_focus=args.research_focus or "",
                ),
                args.paper,
                args.profile,
            )
        else:
            saved = await generator.revise_saved(
                args.professor_id, args.instruction, args.profile
            )
    if saved is None:
        return _fail(generator.error or "Email generation failed")

    if saved.alignment_summary:
        console.print(Panel(saved.alignment_summary, title="Alignment"))
    console.print(
        Panel(saved.outreach_email or "", title=saved.email_subject or "Email")
    )
    return 0


# ── SOP ──


async def cmd_sop(app: ResonextApp, args: argparse.Namespace) -> int:
    generator = app.sops
    action = args.sop_action

    if action == "list":
        table = Table(title="Statements of purpose")
        table.add_column("ID", style="dim")
        table.add_column("University")
        table.add_column("Program")
        table.add_column("Updated")
        for sop in generator.sops_for_active_profile():
            table.add_row(sop.id, sop.university, sop.program, sop.updated_at)
        console.print(table)
        return 0

    if action == "delete":
        generator.delete(args.sop_id)
        console.print("[green][+] SOP deleted[/green]")
        return 0

    if action == "show":
        sop = generator.get(args.sop_id)
    elif action == "generate":
        targets = []
        for professor_id in args.professor or []:
            professor = app.saved.get_professor(professor_id)
            if professor is None:
                return _fail(f"Unknown saved professor: {professor_id}")
            targets.append(professor)
        with console.status("Drafting SOP..."):
            sop = await generator.generate(
                args.university, args.program, targets, args.paper, args.profile
            )
    else:
        with console.status("Revising SOP..."):
            sop = await generator.revise(args.sop_id, args.instruction)

    if sop is None:
        return _fail(generator.error or "SOP not found")
    console.print(Panel(sop.content, title=f"{sop.program} at {sop.university}"))
    console.print(f"[dim]{sop.id}[/dim]")
    return 0


# ── Saved items ──


async def cmd_saved(app: ResonextApp, args: argparse.Namespace) -> int:
    tracker = app.saved
    action = args.saved_action

    if action == "professors":
        table = Table(title="Saved professors")
        for column in ("ID", "Name", "University", "Department", "Sent", "Outcome"):
            table.add_column(column)
        for p in tracker.filter_professors(args.search, args.status, args.sort):
            table.add_row(
                p.id,
                p.name,
                p.university,
                p.department,
                "yes" if p.email_sent else "",
                p.outcome.value,
            )
        console.print(table)
    elif action == "programs":
        grouped = tracker.group_programs_by_university(
            tracker.filter_programs(args.search)
        )
        for university_name, programs in grouped.items():
            table = Table(title=university_name)
            for column in ("ID", "Program", "Degree", "Status", "Deadline"):
                table.add_column(column)
            for p in programs:
                table.add_row(
                    p.id,
                    p.program_name,
                    p.degree_type,
                    p.application_status.value,
                    p.deadline,
                )
            console.print(table)
    elif action == "add":
        saved = tracker.add_manual_professor(
            args.name,
            args.university,
            designation=args.designation or "",
            department=args.department or "",
            email=args.professor_email or "",
            university_profile_link=args.profile_link or "",
            lab_website=args.lab_website or "",
            google_scholar_link=args.scholar_link or "",
        )
        console.print(f"[green][+] Saved {saved.name} ({saved.id})[/green]")
    elif action == "update":
        fields: dict[str, Any] = {}
        if args.sent is not None:
            fields["email_sent"] = args.sent == "yes"
        if args.outcome is not None:
            fields["outcome"] = Outcome(args.outcome)
        if args.notes is not None:
            fields["feedback"] = args.notes
        tracker.update_professor(args.professor_id, **fields)
        console.print("[green][+] Professor updated[/green]")
    elif action == "delete":
        tracker.delete_professor(args.professor_id)
        console.print("[green][+] Professor removed[/green]")
    elif action == "program-status":
        fields = {"application_status": ApplicationStatus(args.status)}
        if args.deadline is not None:
            fields["deadline"] = args.deadline
        if args.notes is not None:
            fields["notes"] = args.notes
        tracker.update_program(args.program_id, **fields)
        console.print("[green][+] Program updated[/green]")
    elif action == "export":
        csv_text = tracker.export_professors_csv(
            tracker.filter_professors(args.search, args.status, args.sort)
        )
        Path(args.output).write_text(csv_text, encoding="utf-8")
        console.print(f"[green][+] Exported to {args.output}[/green]")
    return 0


async def cmd_theme(app: ResonextApp, args: argparse.Namespace) -> int:
    app.state.set_theme(args.theme)
    console.print(f"[green][+] Theme set to {args.theme}[/green]")
    return 0


# ── Parser ──


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resonext",
        description="Grad school application assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Config JSON (default: config/resonext.json)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to the console")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup", help="Enter Supabase credentials")

    p = sub.add_parser("signup", help="Create an account")
    p.add_argument("--name", required=True)
    p.add_argument("--email", required=True)

    p = sub.add_parser("signin", help="Sign in")
    p.add_argument("--email", required=True)

    sub.add_parser("signout", help="Sign out and clear local data")
    sub.add_parser("status", help="Show session and account summary")

    p = sub.add_parser("profile", help="Manage applicant profiles")
    profile_sub = p.add_subparsers(dest="profile_action", required=True)
    profile_sub.add_parser("list")
    q = profile_sub.add_parser("create")
    q.add_argument("profile_name", nargs="?")
    q = profile_sub.add_parser("select")
    q.add_argument("profile_id")
    q = profile_sub.add_parser("delete")
    q.add_argument("profile_id", nargs="?")
    q = profile_sub.add_parser("edit", help="Edit the active profile")
    q.add_argument("--profile-name")
    for key in _PROFILE_FIELDS:
        q.add_argument(f"--{key.replace('_', '-')}", dest=key)
    for kind in ("bachelor", "master"):
        for key in ("university", "major", "gpa"):
            q.add_argument(f"--{kind}-{key}", dest=f"{kind}_{key}")
    q.add_argument("--major", dest="bachelor_major", help="Alias for --bachelor-major")
    q = profile_sub.add_parser("import-cv", help="Fill the active profile from a CV")
    q.add_argument("path")
    q = profile_sub.add_parser("add-sample", help="Add a sample SOP file")
    q.add_argument("path")

    p = sub.add_parser("discover", help="Find universities and professors")
    p.add_argument("--profile", help="Profile ID to search with (default: active)")
    discover_sub = p.add_subparsers(dest="discover_action", required=True)
    q = discover_sub.add_parser("universities")
    q.add_argument("--country", required=True)
    q.add_argument("--state")
    q = discover_sub.add_parser("professors")
    q.add_argument("--university", required=True)
    q.add_argument("--department")
    q.add_argument("--interest")
    q.add_argument("--more", type=int, default=0, help="Extra result pages to load")
    q.add_argument("--save", action="store_true", help="Save every professor found")

    p = sub.add_parser("programs", help="Find graduate programs")
    p.add_argument("--profile", help="Profile ID to search with (default: active)")
    p.add_argument("--university")
    p.add_argument("--country")
    p.add_argument("--state")
    p.add_argument("--keywords")
    p.add_argument("--more", type=int, default=0, help="Extra pages (broad search only)")
    p.add_argument("--save", type=int, nargs="*", help="Toggle save for result numbers")

    p = sub.add_parser("email", help="Draft outreach emails")
    p.add_argument("--profile", help="Profile ID to write as (default: active)")
    email_sub = p.add_subparsers(dest="email_action", required=True)
    q = email_sub.add_parser("draft", help="Draft for a saved professor")
    q.add_argument("professor_id")
    q.add_argument("--paper", action="append")
    q = email_sub.add_parser("manual", help="Draft for a professor not yet saved")
    q.add_argument("--name", required=True)
    q.add_argument("--university", required=True)
    q.add_argument("--department")
    q.add_argument("--professor-email")
    q.add_argument("--lab-website")
    q.add_argument("--research-focus")
    q.add_argument("--paper", action="append")
    q = email_sub.add_parser("revise", help="Revise a saved professor's email")
    q.add_argument("professor_id")
    q.add_argument("--instruction", required=True)

    p = sub.add_parser("sop", help="Statements of purpose")
    p.add_argument("--profile", help="Profile ID to write as (default: active)")
    sop_sub = p.add_subparsers(dest="sop_action", required=True)
    sop_sub.add_parser("list")
    q = sop_sub.add_parser("show")
    q.add_argument("sop_id")
    q = sop_sub.add_parser("generate")
    q.add_argument("--university", required=True)
    q.add_argument("--program", required=True)
    q.add_argument("--professor", action="append", help="Saved professor ID to mention")
    q.add_argument("--paper", action="append")
    q = sop_sub.add_parser("revise")
    q.add_argument("sop_id")
    q.add_argument("--instruction", required=True)
    q = sop_sub.add_parser("delete")
    q.add_argument("sop_id")

    p = sub.add_parser("saved", help="Saved professors and programs")
    saved_sub = p.add_subparsers(dest="saved_action", required=True)
    for name in ("professors", "export"):
        q = saved_sub.add_parser(name)
        q.add_argument("--search", default="")
        q.add_argument("--status", default="all", choices=["all", "sent", "pending"])
        q.add_argument(
            "--sort",
            default="name-asc",
            choices=["name-asc", "name-desc", "uni-asc", "uni-desc"],
        )
        if name == "export":
            q.add_argument("--output", default="saved_professors.csv")
    q = saved_sub.add_parser("programs")
    q.add_argument("--search", default="")
    q = saved_sub.add_parser("add", help="Save a professor by hand")
    q.add_argument("--name", required=True)
    q.add_argument("--university", required=True)
    q.add_argument("--designation")
    q.add_argument("--department")
    q.add_argument("--professor-email")
    q.add_argument("--profile-link")
    q.add_argument("--lab-website")
    q.add_argument("--scholar-link")
    q = saved_sub.add_parser("update")
    q.add_argument("professor_id")
    q.add_argument("--sent", choices=["yes", "no"])
    q.add_argument("--outcome", choices=[o.value for o in Outcome])
    q.add_argument("--notes")
    q = saved_sub.add_parser("delete")
    q.add_argument("professor_id")
    q = saved_sub.add_parser("program-status")
    q.add_argument("program_id")
    q.add_argument("status", choices=[s.value for s in ApplicationStatus])
    q.add_argument("--deadline")
    q.add_argument("--notes")

    p = sub.add_parser("theme", help="Set the display theme")
    p.add_argument("theme", choices=["light", "dark"])

    return parser


COMMANDS: dict[str, Handler] = {
    "signup": cmd_signup,
    "signin": cmd_signin,
    "signout": cmd_signout,
    "status": cmd_status,
    "profile": cmd_profile,
    "discover": cmd_discover,
    "programs": cmd_programs,
    "email": cmd_email,
    "sop": cmd_sop,
    "saved": cmd_saved,
    "theme": cmd_theme,
}

# Commands that work without a loaded account document
_NO_ACCOUNT = {"signup", "signin", "signout", "status", "theme"}


async def run(config: AppConfig, args: argparse.Namespace) -> int:
    """Resume the remembered session and dispatch one command."""
    async with ResonextApp(config) as app:
        await app.resume()
        app.state.set_last_view(args.command)

        if args.command not in _NO_ACCOUNT:
            state = app.session.state
            if state is SessionState.UNAUTHENTICATED:
                return _fail("Not signed in. Run `resonext signin` first.")
            if state is SessionState.LOAD_FAILED:
                return _fail(f"Could not load account data: {app.session.load_error}")

        code = await COMMANDS[args.command](app, args)
        await app.session.flush()
        if app.session.conflict_detected:
            console.print(
                "[yellow][!] Your data changed on another device; "
                "latest changes were not saved. Run the command again.[/yellow]"
            )
        return code


def show_setup_screen(error: ConfigurationError) -> int:
    console.print(Panel(str(error), title="Setup required", style="yellow"))
    try:
        CredentialManager().check_required_credentials()
    except ValueError as e:
        return _fail(str(e))
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    load_dotenv()

    try:
        config = AppConfig.load(args.config)
    except (FileNotFoundError, ValueError) as e:
        return _fail(f"Invalid configuration: {e}")
    configure_logging(config.log_file, config.log_level, console=args.verbose)

    if args.command == "setup":
        manager = CredentialManager()
        try:
            manager.check_required_credentials()
        except ValueError as e:
            return _fail(str(e))
        manager.update_credentials()
        return 0

    try:
        return asyncio.run(run(config, args))
    except ConfigurationError as e:
        return show_setup_screen(e)
    except ResonextError as e:
        return _fail(str(e))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
