"""
Saved-Items Tracker

CRUD over saved professors and saved programs, plus the filter, sort, group
and CSV export views of them. Every mutation commits the session document.

Saved professors are unique by (name, university): saving one that already
exists merges the new fields into it. Saved programs are keyed by
generate_program_id(); saving an already-saved program unsaves it.
"""

import csv
import io
from typing import Any, Optional, Union

from pydantic import ValidationError

from resonext.models.professor import (
    AnalysisResult,
    AnyProfessor,
    ProfessorProfile,
    ProfessorRecommendation,
    SavedProfessor,
    generate_professor_id,
    research_summary_of,
)
from resonext.models.program import ProgramDetails, SavedProgram, generate_program_id
from resonext.session import SessionController
from resonext.utils.errors import InputValidationError
from resonext.utils.logger import get_logger

CSV_HEADER = [
    "Name",
    "University",
    "Department",
    "Email Sent",
    "Outcome",
    "Email",
    "Profile URL",
    "Lab URL",
    "Scholar URL",
    "Notes",
]

EMAIL_STATUSES = ("all", "sent", "pending")
SORT_ORDERS = ("name-asc", "name-desc", "uni-asc", "uni-desc")


class SavedItemsTracker:
    """Saved professors and programs of the signed-in account."""

    def __init__(self, session: SessionController) -> None:
        self.session = session
        self.logger = get_logger(flow="saved", component="saved_items_tracker")

    @property
    def professors(self) -> list[SavedProfessor]:
        return self.session.document.saved_professors

    @property
    def programs(self) -> list[SavedProgram]:
        return self.session.document.saved_programs

    # ------------------------------------------------------------------
    # Professors
    # ------------------------------------------------------------------

    def find_professor(self, name: str, university: str) -> Optional[SavedProfessor]:
        """Saved professor with this exact (name, university), or None."""
        return next(
            (
                p
                for p in self.professors
                if p.name == name and p.university == university
            ),
            None,
        )

    def get_professor(self, professor_id: str) -> Optional[SavedProfessor]:
        return next((p for p in self.professors if p.id == professor_id), None)

    def is_professor_saved(self, professor_id: str) -> bool:
        return self.get_professor(professor_id) is not None

    def save_professor(
        self,
        professor: Union[ProfessorRecommendation, SavedProfessor],
        analysis: Optional[AnalysisResult] = None,
    ) -> SavedProfessor:
        """
        Save a professor, merging into an existing record with the same
        (name, university).

        Args:
            professor: Discovery result or saved record
            analysis: Generated email to store with the professor

        Returns:
            The stored record
        """
        document = self.session.require_ready()
        if not professor.name.strip() or not professor.university.strip():
            raise InputValidationError("Professor name and university are required.")

        # A discovery result carries no tracked fields, so feedback, email_sent
        # and outcome survive a re-save from discovery
        incoming = professor.model_dump(exclude={"id"})
        if analysis is not None:
            incoming.update(analysis.model_dump())

        existing = self.find_professor(professor.name, professor.university)
        if existing is not None:
            merged = SavedProfessor.model_validate({**existing.model_dump(), **incoming})
            index = document.saved_professors.index(existing)
            document.saved_professors[index] = merged
            self.session.commit("update saved professor")
            self.logger.info("Saved professor updated", professor_id=merged.id)
            return merged

        saved = SavedProfessor.model_validate(
            {
                **incoming,
                "id": professor.id
                or generate_professor_id(professor.name, professor.university),
            }
        )
        document.saved_professors.append(saved)
        self.session.commit("save professor")
        self.logger.info("Professor saved", professor_id=saved.id)
        return saved

    def save_analysis(
        self, professor: AnyProfessor, result: AnalysisResult
    ) -> SavedProfessor:
        """
        Store a generated email with a professor.

        An existing record with the same (name, university) only has its
        analysis fields replaced; otherwise a new record is created from the
        professor description.
        """
        document = self.session.require_ready()
        existing = self.find_professor(professor.name, professor.university)
        if existing is not None:
            merged = existing.model_copy(update=result.model_dump())
            index = document.saved_professors.index(existing)
            document.saved_professors[index] = merged
            self.session.commit("save email to professor")
            return merged

        if isinstance(professor, ProfessorProfile):
            fields: dict[str, Any] = {
                "name": professor.name,
                "university": professor.university,
                "department": professor.department,
                "email": professor.email,
                "lab_website": professor.lab_website,
                "research_summary": research_summary_of(professor),
                "id": generate_professor_id(professor.name, professor.university),
            }
        else:
            fields = professor.model_dump()
        saved = SavedProfessor.model_validate({**fields, **result.model_dump()})
        document.saved_professors.append(saved)
        self.session.commit("save email to new professor")
        self.logger.info("Professor saved with email", professor_id=saved.id)
        return saved

    def add_manual_professor(
        self,
        name: str,
        university: str,
        designation: str = "",
        department: str = "",
        email: str = "",
        university_profile_link: str = "",
        lab_website: str = "",
        google_scholar_link: str = "",
    ) -> SavedProfessor:
        """Save a professor typed in by the user."""
        return self.save_professor(
            SavedProfessor(
                name=name.strip(),
                university=university.strip(),
                designation=designation.strip() or None,
                department=department.strip(),
                email=email.strip(),
                university_profile_link=university_profile_link.strip(),
                lab_website=lab_website.strip(),
                google_scholar_link=google_scholar_link.strip(),
            )
        )

    def update_professor(self, professor_id: str, **fields: Any) -> SavedProfessor:
        """Edit fields of a saved professor (e.g. feedback, email_sent, outcome)."""
        document = self.session.require_ready()
        existing = self.get_professor(professor_id)
        if existing is None:
            raise InputValidationError(f"Unknown saved professor: {professor_id}")
        unknown = set(fields) - (set(SavedProfessor.model_fields) - {"id"})
        if unknown:
            raise InputValidationError(
                f"Unknown professor field(s): {', '.join(sorted(unknown))}"
            )
        try:
            updated = SavedProfessor.model_validate({**existing.model_dump(), **fields})
        except ValidationError as e:
            raise InputValidationError(f"Invalid professor update: {e}") from e

        index = document.saved_professors.index(existing)
        document.saved_professors[index] = updated
        self.session.commit("edit saved professor")
        return updated

    def delete_professor(self, professor_id: str) -> None:
        document = self.session.require_ready()
        before = len(document.saved_professors)
        document.saved_professors = [
            p for p in document.saved_professors if p.id != professor_id
        ]
        if len(document.saved_professors) != before:
            self.session.commit("delete saved professor")

    def filter_professors(
        self,
        term: str = "",
        email_status: str = "all",
        sort_order: str = "name-asc",
    ) -> list[SavedProfessor]:
        """
        Saved professors matching a search term and email status, sorted.

        Args:
            term: Case-insensitive substring of name, university, department
                or research summary
            email_status: "all", "sent" or "pending"
            sort_order: "name-asc", "name-desc", "uni-asc" or "uni-desc"
        """
        if email_status not in EMAIL_STATUSES:
            raise InputValidationError(f"email_status must be one of {EMAIL_STATUSES}")
        if sort_order not in SORT_ORDERS:
            raise InputValidationError(f"sort_order must be one of {SORT_ORDERS}")

        needle = term.strip().lower()

        def matches(p: SavedProfessor) -> bool:
            haystacks = (p.name, p.university, p.department, p.research_summary)
            if needle and not any(needle in h.lower() for h in haystacks):
                return False
            if email_status == "sent":
                return p.email_sent
            if email_status == "pending":
                return not p.email_sent
            return True

        field, direction = sort_order.split("-")
        key_attr = "name" if field == "name" else "university"
        return sorted(
            (p for p in self.professors if matches(p)),
            key=lambda p: getattr(p, key_attr).casefold(),
            reverse=direction == "desc",
        )

    @staticmethod
    def export_professors_csv(professors: list[SavedProfessor]) -> str:
        """
        Render professors as CSV, one row per record.

        Fields containing commas, quotes or newlines are quoted and embedded
        quotes are doubled.
        """
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for p in professors:
            writer.writerow(
                [
                    p.name,
                    p.university,
                    p.department,
                    "true" if p.email_sent else "false",
                    p.outcome.value,
                    p.email,
                    p.university_profile_link,
                    p.lab_website,
                    p.google_scholar_link,
                    p.feedback,
                ]
            )
        return buffer.getvalue()

    # ------------------------------------------------------------------
    # Programs
    # ------------------------------------------------------------------

    def get_program(self, program_id: str) -> Optional[SavedProgram]:
        return next((p for p in self.programs if p.id == program_id), None)

    def is_program_saved(self, program_id: str) -> bool:
        return self.get_program(program_id) is not None

    def save_program(self, program: ProgramDetails, university_name: str) -> bool:
        """
        Toggle a program's saved state.

        Returns:
            True if the program is now saved, False if it was unsaved
        """
        document = self.session.require_ready()
        program_id = generate_program_id(program.program_name, university_name)

        if self.is_program_saved(program_id):
            document.saved_programs = [
                p for p in document.saved_programs if p.id != program_id
            ]
            self.session.commit("unsave program")
            self.logger.info("Program unsaved", program_id=program_id)
            return False

        details = ProgramDetails.model_validate(program.model_dump()).model_dump()
        document.saved_programs.append(
            SavedProgram.model_validate(
                {**details, "id": program_id, "university_name": university_name}
            )
        )
        self.session.commit("save program")
        self.logger.info("Program saved", program_id=program_id)
        return True

    def update_program(self, program_id: str, **fields: Any) -> SavedProgram:
        """Edit tracked fields of a saved program (application_status, deadline, notes)."""
        document = self.session.require_ready()
        existing = self.get_program(program_id)
        if existing is None:
            raise InputValidationError(f"Unknown saved program: {program_id}")
        unknown = set(fields) - (set(SavedProgram.model_fields) - {"id"})
        if unknown:
            raise InputValidationError(
                f"Unknown program field(s): {', '.join(sorted(unknown))}"
            )
        try:
            updated = SavedProgram.model_validate({**existing.model_dump(), **fields})
        except ValidationError as e:
            raise InputValidationError(f"Invalid program update: {e}") from e

        index = document.saved_programs.index(existing)
        document.saved_programs[index] = updated
        self.session.commit("edit saved program")
        return updated

    def delete_program(self, program_id: str) -> None:
        document = self.session.require_ready()
        before = len(document.saved_programs)
        document.saved_programs = [
            p for p in document.saved_programs if p.id != program_id
        ]
        if len(document.saved_programs) != before:
            self.session.commit("delete saved program")

    def filter_programs(self, term: str = "") -> list[SavedProgram]:
        """Saved programs whose program or university name contains term."""
        needle = term.strip().lower()
        return [
            p
            for p in self.programs
            if needle in p.program_name.lower() or needle in p.university_name.lower()
        ]

    @staticmethod
    def group_programs_by_university(
        programs: list[SavedProgram],
    ) -> dict[str, list[SavedProgram]]:
        """Programs grouped by university, universities in name order."""
        groups: dict[str, list[SavedProgram]] = {}
        for program in programs:
            groups.setdefault(program.university_name, []).append(program)
        return {name: groups[name] for name in sorted(groups, key=str.casefold)}
