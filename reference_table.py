#!/usr/bin/env python3
"""
Reference table of chemical color signatures.

Each signature maps a presumptive test and the color range it produces to a
candidate substance with a base confidence (0-1). The table is read-only once
built; analyzers receive it explicitly, so alternate tables can be swapped in
without touching shared state.

Updating the table: edit ``DEFAULT_SIGNATURES`` below (literature values), or
export it with ``ReferenceTable.to_json``, edit the file, and load it back
with ``ReferenceTable.from_json``.
"""

import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Iterable, Iterator, Union


REQUIRED_FIELDS = (
    'substance', 'substance_localized', 'test_type', 'color_range',
    'confidence', 'notes', 'notes_localized',
)


@dataclass(frozen=True)
class ChemicalSignature:
    """A reference entry. ``confidence`` is the base confidence on a 0-1 scale."""
    substance: str
    substance_localized: str  # Arabic
    test_type: str
    color_range: str  # Free-text color family, e.g. "Purple to Black"
    confidence: float
    notes: str
    notes_localized: str  # Arabic


DEFAULT_SIGNATURES = (
    ChemicalSignature(
        substance='MDMA/Ecstasy',
        substance_localized='إم دي إم إيه / إكستاسي',
        test_type='Marquis Test',
        color_range='Purple to Black',
        confidence=0.85,
        notes='Strong purple to black reaction indicates MDMA presence',
        notes_localized='تفاعل بنفسجي إلى أسود قوي يشير إلى وجود إم دي إم إيه',
    ),
    ChemicalSignature(
        substance='Cocaine',
        substance_localized='كوكايين',
        test_type='Scott Test',
        color_range='Blue',
        confidence=0.80,
        notes='Bright blue color indicates cocaine presence',
        notes_localized='اللون الأزرق الساطع يشير إلى وجود الكوكايين',
    ),
    ChemicalSignature(
        substance='Heroin',
        substance_localized='هيروين',
        test_type='Marquis Test',
        color_range='Brown to Orange',
        confidence=0.75,
        notes='Brown to orange reaction suggests heroin',
        notes_localized='التفاعل البني إلى البرتقالي يشير إلى الهيروين',
    ),
    ChemicalSignature(
        substance='LSD',
        substance_localized='إل إس دي',
        test_type='Ehrlich Test',
        color_range='Purple to Pink',
        confidence=0.90,
        notes='Purple to pink color indicates LSD presence',
        notes_localized='اللون البنفسجي إلى الوردي يشير إلى وجود إل إس دي',
    ),
    ChemicalSignature(
        substance='Methamphetamine',
        substance_localized='ميثامفيتامين',
        test_type='Marquis Test',
        color_range='Orange to Red',
        confidence=0.82,
        notes='Orange to red reaction indicates methamphetamine',
        notes_localized='التفاعل البرتقالي إلى الأحمر يشير إلى الميثامفيتامين',
    ),
    ChemicalSignature(
        substance='Cannabis/THC',
        substance_localized='حشيش / تي إتش سي',
        test_type='Duquenois-Levine Test',
        color_range='Purple',
        confidence=0.70,
        notes='Purple color indicates cannabis presence',
        notes_localized='اللون البنفسجي يشير إلى وجود الحشيش',
    ),
)


class ReferenceTable:
    """Immutable, ordered collection of chemical signatures."""

    def __init__(self, signatures: Iterable[ChemicalSignature] = DEFAULT_SIGNATURES):
        self._signatures = tuple(signatures)
        if not self._signatures:
            raise ValueError("Reference table must contain at least one signature")

    def __iter__(self) -> Iterator[ChemicalSignature]:
        return iter(self._signatures)

    def __len__(self) -> int:
        return len(self._signatures)

    def __getitem__(self, index: int) -> ChemicalSignature:
        return self._signatures[index]

    @property
    def signatures(self) -> tuple:
        return self._signatures

    @classmethod
    def from_records(cls, records: list) -> 'ReferenceTable':
        """
        Build a table from plain dicts, validating every entry.

        Raises:
            ValueError: If an entry is missing fields or has an out-of-range
                confidence. The message names the entry index.
        """
        if not isinstance(records, list):
            raise ValueError("Reference table must be a list of signature records")

        signatures = []
        for i, record in enumerate(records):
            if not isinstance(record, dict):
                raise ValueError(f"Signature {i}: expected an object, got {type(record).__name__}")
            missing = [f for f in REQUIRED_FIELDS if f not in record]
            if missing:
                raise ValueError(f"Signature {i}: missing fields {', '.join(missing)}")
            try:
                confidence = float(record['confidence'])
            except (TypeError, ValueError):
                raise ValueError(f"Signature {i}: confidence must be a number") from None
            if not 0.0 <= confidence <= 1.0:
                raise ValueError(f"Signature {i}: confidence {confidence} outside [0, 1]")

            signatures.append(ChemicalSignature(
                substance=str(record['substance']),
                substance_localized=str(record['substance_localized']),
                test_type=str(record['test_type']),
                color_range=str(record['color_range']),
                confidence=confidence,
                notes=str(record['notes']),
                notes_localized=str(record['notes_localized']),
            ))

        return cls(signatures)

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> 'ReferenceTable':
        """Load a table from a JSON file holding a list of signature records."""
        path = Path(path)
        try:
            records = json.loads(path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            raise FileNotFoundError(f"Reference table not found: {path}")
        except json.JSONDecodeError as e:
            raise ValueError(f"Reference table {path} is not valid JSON: {e}") from e
        return cls.from_records(records)

    def to_records(self) -> list:
        return [asdict(s) for s in self._signatures]

    def to_json(self, path: Union[str, Path]) -> None:
        Path(path).write_text(
            json.dumps(self.to_records(), ensure_ascii=False, indent=2),
            encoding='utf-8',
        )
