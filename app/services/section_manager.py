"""
Section Manager
Ordered, one-way-lockable partition of an attempt's questions
FILE: app/services/section_manager.py
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from app.models.questions import QuestionItem
from app.models.session import Section, utcnow

logger = logging.getLogger(__name__)


class SectionError(Exception):
    """Base exception for section operations"""
    pass


class SectionNotFoundError(SectionError):
    pass


class SectionNotActiveError(SectionError):
    """Only the active section may be finished"""
    pass


@dataclass
class FinishOutcome:
    """Result of finishing a section"""
    finished: Optional[Section]
    next_section: Optional[Section]
    already_locked: bool = False

    @property
    def all_locked(self) -> bool:
        return self.next_section is None and not self.already_locked


class SectionManager:
    """
    Owns the section list and which questions belong to which section.

    Sections are fixed at construction. Locking is monotone: a locked
    section is never unlocked and its questions never accept answers again.
    Exactly one section is active until all are locked.
    """

    def __init__(self, sections: List[Section], items: List[QuestionItem]):
        if not sections:
            raise SectionError("An attempt needs at least one section")

        self._sections = sorted(sections, key=lambda s: s.ordinal)
        self._by_id: Dict[str, Section] = {s.id: s for s in self._sections}
        if len(self._by_id) != len(self._sections):
            raise SectionError("Duplicate section ids")

        self._questions: Dict[str, List[QuestionItem]] = {s.id: [] for s in self._sections}
        self._section_of: Dict[str, str] = {}
        single = self._sections[0].id if len(self._sections) == 1 else None
        for item in items:
            section_id = item.question.section_id or single
            if section_id not in self._questions:
                raise SectionError(
                    f"Question {item.id} references unknown section {item.question.section_id}"
                )
            self._questions[section_id].append(item)
            self._section_of[item.id] = section_id

        self._active_index: Optional[int] = self._first_unlocked_from(0)

    def _first_unlocked_from(self, start: int) -> Optional[int]:
        for idx in range(start, len(self._sections)):
            if not self._sections[idx].locked:
                return idx
        return None

    @property
    def sections(self) -> List[Section]:
        return list(self._sections)

    @property
    def active(self) -> Optional[Section]:
        if self._active_index is None:
            return None
        return self._sections[self._active_index]

    def get(self, section_id: str) -> Section:
        try:
            return self._by_id[section_id]
        except KeyError:
            raise SectionNotFoundError(f"Section not found: {section_id}")

    def questions_in(self, section_id: str) -> List[QuestionItem]:
        self.get(section_id)
        return list(self._questions[section_id])

    def section_of(self, question_id: str) -> Optional[Section]:
        section_id = self._section_of.get(question_id)
        return self._by_id[section_id] if section_id else None

    def is_locked(self, section_id: str) -> bool:
        return self.get(section_id).locked

    def finish(self, section_id: str) -> FinishOutcome:
        """
        Lock `section_id`, stamp completedAt and advance the active pointer

        Finishing an already-locked section is a no-op so a user click and a
        section-timer expiry landing together resolve to one transition.

        Raises:
            SectionNotFoundError: unknown section id
            SectionNotActiveError: section is neither locked nor active
        """
        section = self.get(section_id)

        if section.locked:
            logger.debug(f"Section {section_id} already locked, ignoring finish")
            return FinishOutcome(finished=None, next_section=self.active, already_locked=True)

        active = self.active
        if active is None or active.id != section_id:
            raise SectionNotActiveError(
                f"Section {section_id} is not the active section "
                f"(active: {active.id if active else None})"
            )

        section.locked = True
        section.completed_at = utcnow()
        self._active_index = self._first_unlocked_from(self._active_index + 1)

        next_section = self.active
        logger.info(
            f"🔒 Section locked: {section.name} ({section_id}) - "
            f"next: {next_section.id if next_section else 'none'}"
        )
        return FinishOutcome(finished=section, next_section=next_section)
