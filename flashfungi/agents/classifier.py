"""Heuristic detection of molecular (DNA) identification evidence.

Observers and identifiers post sequencing results as free text: in the
description, in observation fields such as "DNA Barcode ITS", and most often
in comments ("ITS sequence 99% match to ..."). The classifier concatenates
those fields and looks for sequencing vocabulary.

This is tuned for recall. It is used to prioritize specimens, never as proof
of a molecular identification. Known false positives:

- "its 100% a bolete" matches the ITS percentage pattern.
- "its identification is tricky" and "its matching volva" match the "its
  identification" and "its match" keywords, which cannot tell the possessive
  from the locus.
- "BOLD ORANGE cap" matches the BOLD identifier pattern. Identifiers must
  contain a letter, so "Bold 2023" does not.
- A comment *requesting* sequencing ("needs DNA barcoding") matches the
  keyword list.

Known false negatives: results posted only as an attached PDF or photo, and
non-English write-ups.
"""

import re

from flashfungi.search.models import Observation

DNA_KEYWORDS_VERSION = "2"

# Matched as lowercase substrings of the combined text.
DNA_KEYWORDS: tuple[str, ...] = (
    # ITS results
    "its sequence",
    "its match",
    "its sequenced",
    "its positive",
    "its confirmed",
    "its identification",
    "its analysis",
    # Other loci
    "lsu sequence",
    "coi sequence",
    "rbcl sequence",
    "trnh-psba sequence",
    # Result language
    "sequence match",
    "sequenced as",
    "sequence confirmed",
    "sequence identification",
    "sequence analysis",
    "sequencing results",
    "sequence data",
    "sequence similarity",
    "molecular identification",
    "molecular confirmed",
    "molecular data",
    "dna confirmed",
    "dna identification",
    "genetically confirmed",
    "phylogenetic analysis",
    "dna barcoding",
    "barcode match",
    "blast results",
    # Database references
    "genbank",
    "bold match",
    "ncbi match",
    "sequence database",
)

# Matched against the original-case text; lowercase-only parts are scoped
# with (?i:...) so the "Capitalized taxon" parts stay case-sensitive.
DNA_PATTERNS: tuple[re.Pattern, ...] = (
    # "ITS: 99% ..."
    re.compile(r"\b(?i:its)[:\s]+\d+(?:\.\d+)?%"),
    # "sequenced as Amanita muscaria"
    re.compile(r"(?i:sequenced\s+as)\s+[A-Z][a-z]+"),
    # "molecular ID: Amanita"
    re.compile(r"(?i:molecular\s+id)[:\s]+[A-Z][a-z]+"),
    # "DNA confirms Amanita"
    re.compile(r"(?i:dna\s+(?:confirms?|identifies?))\s+[A-Z][a-z]+"),
    re.compile(r"(?i:genbank\s+(?:accession|number))"),
    # "accession MN123456.1"
    re.compile(r"(?i:genbank|accession)(?:\s*(?i:no\.?|number|#))?[:\s]+[A-Z]{1,2}_?\d{5,8}"),
    # "BOLD:AAB1234" / "BOLD: AB123456"
    re.compile(r"\b(?i:bold)[:\s]+(?=[A-Z0-9]*[A-Z])[A-Z0-9]{4,}\b"),
)


def dna_evidence_text(observation: Observation) -> str:
    """Description, ``name: value`` fields and comment bodies joined by spaces."""
    parts: list[str] = []
    if observation.description:
        parts.append(observation.description)
    for field in observation.ofvs:
        parts.append(f"{field.name}: {field.value or ''}")
    for comment in observation.comments:
        if comment.body:
            parts.append(comment.body)
    return " ".join(parts)


def has_dna_evidence(observation: Observation) -> bool:
    return text_has_dna_evidence(dna_evidence_text(observation))


def text_has_dna_evidence(text: str) -> bool:
    lowered = text.lower()
    if any(keyword in lowered for keyword in DNA_KEYWORDS):
        return True
    return any(pattern.search(text) for pattern in DNA_PATTERNS)
