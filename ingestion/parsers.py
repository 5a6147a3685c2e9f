"""
Ingestion - Response Parsers.

============================================================
RESPONSIBILITY
============================================================
Turns booking system response files into ParsedResponse.

MX3 writes a set of answer files per booking:
    3070342-L1.xml_evs_ans_ok.dtd_37933598_2.xml   answer (trigger)
    3070342-L1.xml_evs_ans_err.dtd_37933598_3.xml  errors / warnings
The trade id is the text before the first '-', the set shares
the text before the first '_'.

Calypso writes one acknowledgement per booking:
    580_FX_SPOT_3966887408_result.xml
    FX_FORWARD_580_3966887408_result.xml
The trade id is the first all-digit token of the file stem.

Any file that cannot be read into an outcome raises
ResponseParseError and is quarantined by the ingestor.

============================================================
"""

import glob
import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from booking.types import ParsedResponse, ResponseOutcome, SystemCode
from core.exceptions import ResponseParseError


# trade_system_link.trade_id is a signed BIGINT
MAX_TRADE_ID = 2**63 - 1


# ============================================================
# BASE
# ============================================================

class ResponseParser(ABC):
    """Parser for the response files of one booking system."""

    system_code: SystemCode

    @abstractmethod
    def is_trigger(self, file_name: str) -> bool:
        """Whether the file starts processing of a response."""
        pass

    @abstractmethod
    def trade_id_from_name(self, file_name: str) -> Optional[int]:
        """
        Trade id encoded in the file name, None if absent.

        Raises:
            ResponseParseError: The encoded id is not a valid trade id
        """
        pass

    @abstractmethod
    def parse(self, path: Path) -> ParsedResponse:
        """
        Parse one trigger file.

        Raises:
            ResponseParseError: The file is not a valid response
        """
        pass

    def related_files(self, path: Path) -> List[Path]:
        """Files archived or quarantined together with the trigger."""
        return [path]

    def list_triggers(self, folder: Path) -> List[Path]:
        """Trigger files directly inside folder, sorted by name."""
        if not folder.is_dir():
            return []
        return sorted(
            entry for entry in folder.iterdir()
            if entry.is_file() and self.is_trigger(entry.name)
        )

    def _build(self, **fields) -> ParsedResponse:
        try:
            return ParsedResponse(system_code=self.system_code, **fields)
        except ValidationError as e:
            raise ResponseParseError(
                f"Incomplete {self.system_code.value} response: {e.errors()[0]['msg']}",
                file_name=fields.get("file_name"),
                trade_id=fields.get("trade_id"),
            ) from e


def _trade_id(token: str, file_name: str) -> int:
    try:
        trade_id = int(token)
    except ValueError as e:
        raise ResponseParseError(f"Invalid trade id {token!r}", file_name=file_name) from e
    if not 0 < trade_id <= MAX_TRADE_ID:
        raise ResponseParseError(f"Trade id {token} out of range", file_name=file_name)
    return trade_id


def _load_xml(path: Path) -> ET.Element:
    try:
        return ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        raise ResponseParseError(f"Unreadable XML: {e}", file_name=path.name) from e


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _first_text(root: ET.Element, tag: str) -> Optional[str]:
    for element in root.iter():
        if _local_name(element.tag) == tag and element.text and element.text.strip():
            return element.text.strip()
    return None


# ============================================================
# MX3
# ============================================================

class Mx3ResponseParser(ResponseParser):
    """Parser for MX3 answer file sets."""

    system_code = SystemCode.MX3

    ANSWER_MARKER = "_evs_ans_ok."
    ERROR_MARKER = "_evs_ans_err."
    ERROR_LEVELS = ("Error", "Warning")

    def is_trigger(self, file_name: str) -> bool:
        return self.ANSWER_MARKER in file_name and file_name.endswith("_2.xml")

    def trade_id_from_name(self, file_name: str) -> Optional[int]:
        prefix, dash, _ = file_name.partition("-")
        if not dash or not prefix.isdigit():
            return None
        return _trade_id(prefix, file_name)

    def base_name(self, file_name: str) -> str:
        """Booking file name shared by the answer set (text before the first '_')."""
        base, underscore, _ = file_name.partition("_")
        if not underscore or not base:
            raise ResponseParseError("Invalid MX3 response file name", file_name=file_name)
        return base

    def related_files(self, path: Path) -> List[Path]:
        base = self.base_name(path.name)
        siblings = sorted(path.parent.glob(f"{glob.escape(base)}_*"))
        if path not in siblings:
            siblings.insert(0, path)
        return siblings

    def parse(self, path: Path) -> ParsedResponse:
        file_name = path.name
        trade_id = self.trade_id_from_name(file_name)
        if trade_id is None:
            raise ResponseParseError("Cannot read trade id from MX3 file name", file_name=file_name)

        root = _load_xml(path)
        answer_status = root.get("MXAnswerStatus")
        if answer_status is None:
            raise ResponseParseError(
                "Missing MXAnswerStatus attribute", file_name=file_name, trade_id=trade_id
            )

        related = self.related_files(path)
        messages = self._read_messages(related)

        if answer_status == "OK":
            external_id = _first_text(root, "tradeInternalId") or _first_text(root, "contractId")
            return self._build(
                trade_id=trade_id,
                outcome=ResponseOutcome.SUCCESS,
                external_trade_id=external_id,
                error_text="; ".join(messages) or None,
                file_name=file_name,
                related_files=[p.name for p in related],
            )

        return self._build(
            trade_id=trade_id,
            outcome=ResponseOutcome.FAILURE,
            error_text="; ".join(messages) or f"MX3 answer status {answer_status}",
            file_name=file_name,
            related_files=[p.name for p in related],
        )

    def _read_messages(self, related: List[Path]) -> List[str]:
        error_file = next(
            (
                p for p in related
                if self.ERROR_MARKER in p.name and p.name.endswith("_3.xml")
            ),
            None,
        )
        if error_file is None:
            return []

        root = _load_xml(error_file)
        messages = []
        for element in root.iter():
            if _local_name(element.tag) != "MXException":
                continue
            level = _child_text(element, "Level")
            description = _child_text(element, "Description")
            if level in self.ERROR_LEVELS and description:
                messages.append(description)
        return messages


def _child_text(element: ET.Element, tag: str) -> Optional[str]:
    for child in element:
        if _local_name(child.tag) == tag and child.text and child.text.strip():
            return child.text.strip()
    return None


# ============================================================
# CALYPSO
# ============================================================

class CalypsoResponseParser(ResponseParser):
    """Parser for CalypsoAcknowledgement result files."""

    system_code = SystemCode.CALYPSO

    SUFFIX = "_result.xml"
    DEFAULT_REJECTION = "Rejected by Calypso"
    _TOKEN_SPLIT = re.compile(r"[_\-.]")

    def is_trigger(self, file_name: str) -> bool:
        return file_name.lower().endswith(self.SUFFIX)

    def trade_id_from_name(self, file_name: str) -> Optional[int]:
        stem = Path(file_name).stem
        for token in self._TOKEN_SPLIT.split(stem):
            if token.isdigit():
                return _trade_id(token, file_name)
        return None

    def parse(self, path: Path) -> ParsedResponse:
        file_name = path.name
        trade_id = self.trade_id_from_name(file_name)
        if trade_id is None:
            raise ResponseParseError("Cannot read trade id from Calypso file name", file_name=file_name)

        root = _load_xml(path)
        if _local_name(root.tag) != "CalypsoAcknowledgement":
            raise ResponseParseError(
                f"Unexpected root element {_local_name(root.tag)}",
                file_name=file_name,
                trade_id=trade_id,
            )

        try:
            rejected = int(root.get("Rejected", "0") or 0)
        except ValueError as e:
            raise ResponseParseError(
                f"Invalid Rejected attribute {root.get('Rejected')!r}",
                file_name=file_name,
                trade_id=trade_id,
            ) from e

        if rejected > 0:
            return self._build(
                trade_id=trade_id,
                outcome=ResponseOutcome.FAILURE,
                error_text=self._error_messages(root) or self.DEFAULT_REJECTION,
                file_name=file_name,
            )

        trades = root.find("CalypsoTrades")
        if trades is None:
            raise ResponseParseError(
                "Missing CalypsoTrades element", file_name=file_name, trade_id=trade_id
            )

        for trade in trades.findall("CalypsoTrade"):
            status = (trade.findtext("Status") or "").strip()
            if status.lower() == "success":
                return self._build(
                    trade_id=trade_id,
                    outcome=ResponseOutcome.SUCCESS,
                    external_trade_id=(trade.findtext("CalypsoTradeId") or "").strip() or None,
                    file_name=file_name,
                )

        return self._build(
            trade_id=trade_id,
            outcome=ResponseOutcome.FAILURE,
            error_text=self._error_messages(root) or "No successful CalypsoTrade in acknowledgement",
            file_name=file_name,
        )

    def _error_messages(self, root: ET.Element) -> Optional[str]:
        messages = [
            element.text.strip()
            for element in root.findall("CalypsoErrors/CalypsoError/Error/Message")
            if element.text and element.text.strip()
        ]
        return "; ".join(messages) or None


PARSERS = {
    SystemCode.MX3: Mx3ResponseParser,
    SystemCode.CALYPSO: CalypsoResponseParser,
}


def parser_for(system_code: SystemCode) -> ResponseParser:
    """Create the parser of a response-file system."""
    try:
        return PARSERS[SystemCode.parse(system_code)]()
    except KeyError:
        raise ValueError(f"{system_code} has no response file parser") from None
