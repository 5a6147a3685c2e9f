"""
Tests for the response file parsers.

Tests cover:
- Trigger detection and trade id extraction from file names
- MX3 OK / failure answers, warnings, related files
- Calypso success / rejection / malformed acknowledgements
"""

import pytest

from booking.types import ResponseOutcome, SystemCode
from core.exceptions import ResponseParseError
from ingestion.parsers import CalypsoResponseParser, Mx3ResponseParser, parser_for


# =============================================================
# TEST: MX3
# =============================================================

class TestMx3FileNames:
    """Test MX3 name handling."""

    @pytest.fixture
    def parser(self):
        return Mx3ResponseParser()

    def test_trigger(self, parser):
        assert parser.is_trigger("3070342-L1.xml_evs_ans_ok.dtd_37933598_2.xml")
        assert not parser.is_trigger("3070342-L1.xml_evs_ans_err.dtd_37933598_3.xml")
        assert not parser.is_trigger("3070342-L1.xml")

    def test_trade_id(self, parser):
        assert parser.trade_id_from_name("3070342-L1.xml_evs_ans_ok.dtd_37933598_2.xml") == 3070342
        assert parser.trade_id_from_name("ABC-L1.xml_evs_ans_ok.dtd_1_2.xml") is None
        assert parser.trade_id_from_name("3070342.xml") is None

    def test_trade_id_out_of_range(self, parser, write_mx3):
        with pytest.raises(ResponseParseError):
            parser.trade_id_from_name("0-L1.xml_evs_ans_ok.dtd_1_2.xml")

        path = write_mx3(99999999999999999999)
        with pytest.raises(ResponseParseError) as exc_info:
            parser.parse(path)
        assert "out of range" in exc_info.value.message

    def test_base_name(self, parser):
        assert parser.base_name("3070342-L1.xml_evs_ans_ok.dtd_37933598_2.xml") == "3070342-L1.xml"


class TestMx3Parse:
    """Test MX3 answer parsing."""

    def test_ok_answer(self, write_mx3):
        path = write_mx3(42, internal_id="DEAL123")

        response = Mx3ResponseParser().parse(path)

        assert response.outcome == ResponseOutcome.SUCCESS
        assert response.trade_id == 42
        assert response.system_code == SystemCode.MX3
        assert response.external_trade_id == "DEAL123"
        assert response.error_text is None

    def test_ok_with_warnings(self, write_mx3):
        path = write_mx3(42, messages=[("Warning", "Rate rounded"), ("Info", "ignored")])

        response = Mx3ResponseParser().parse(path)

        assert response.is_success
        assert response.error_text == "Rate rounded"
        assert len(response.related_files) == 2

    def test_failed_answer(self, write_mx3):
        path = write_mx3(42, status="ERROR", messages=[("Error", "Counterparty unknown")])

        response = Mx3ResponseParser().parse(path)

        assert response.outcome == ResponseOutcome.FAILURE
        assert response.error_text == "Counterparty unknown"

    def test_failed_answer_without_error_file(self, write_mx3):
        path = write_mx3(42, status="KO")

        response = Mx3ResponseParser().parse(path)

        assert response.error_text == "MX3 answer status KO"

    def test_missing_status_is_malformed(self, write_mx3):
        path = write_mx3(42, status=None)

        with pytest.raises(ResponseParseError) as exc_info:
            Mx3ResponseParser().parse(path)
        assert exc_info.value.trade_id == 42

    def test_ok_without_trade_id_is_malformed(self, write_mx3):
        path = write_mx3(42, internal_id="")

        with pytest.raises(ResponseParseError):
            Mx3ResponseParser().parse(path)

    def test_unreadable_xml(self, tmp_path):
        path = tmp_path / "42-L1.xml_evs_ans_ok.dtd_1_2.xml"
        path.write_text("<MxMLAnswer")

        with pytest.raises(ResponseParseError):
            Mx3ResponseParser().parse(path)

    def test_related_files_share_base(self, write_mx3):
        path = write_mx3(42, messages=[("Error", "x")])
        write_mx3(420, session="1")

        related = Mx3ResponseParser().related_files(path)

        assert [p.name for p in related] == [
            "42-L1.xml_evs_ans_err.dtd_37933598_3.xml",
            "42-L1.xml_evs_ans_ok.dtd_37933598_2.xml",
        ]


# =============================================================
# TEST: Calypso
# =============================================================

class TestCalypsoParse:
    """Test CalypsoAcknowledgement parsing."""

    @pytest.fixture
    def parser(self):
        return CalypsoResponseParser()

    def test_trade_id_first_digit_token(self, parser):
        assert parser.trade_id_from_name("580_FX_SPOT_3966887408_result.xml") == 580
        assert parser.trade_id_from_name("FX_FORWARD_580_3966887408_result.xml") == 580
        assert parser.trade_id_from_name("FX_SPOT_result.xml") is None

    def test_trade_id_out_of_range(self, parser, write_calypso):
        assert parser.trade_id_from_name("9223372036854775807_FX_SPOT_1_result.xml") == 2**63 - 1

        path = write_calypso(99999999999999999999, calypso_id="1")
        with pytest.raises(ResponseParseError):
            parser.parse(path)

    def test_trigger_case_insensitive(self, parser):
        assert parser.is_trigger("580_FX_SPOT_1_RESULT.XML")
        assert not parser.is_trigger("580_FX_SPOT_1.xml")

    def test_success(self, parser, write_calypso):
        response = parser.parse(write_calypso(580, calypso_id="3966887408"))

        assert response.outcome == ResponseOutcome.SUCCESS
        assert response.trade_id == 580
        assert response.external_trade_id == "3966887408"

    def test_rejected_with_messages(self, parser, write_calypso):
        path = write_calypso(580, rejected=1, errors=["Book not found", "Invalid date"])

        response = parser.parse(path)

        assert response.outcome == ResponseOutcome.FAILURE
        assert response.error_text == "Book not found; Invalid date"

    def test_rejected_without_messages(self, parser, write_calypso):
        response = parser.parse(write_calypso(580, rejected=2))

        assert response.error_text == "Rejected by Calypso"

    def test_no_successful_trade(self, parser, write_calypso):
        response = parser.parse(write_calypso(580, status="failure", errors=["Bad leg"]))

        assert response.outcome == ResponseOutcome.FAILURE
        assert response.error_text == "Bad leg"

    def test_wrong_root(self, parser, tmp_path):
        path = tmp_path / "580_FX_SPOT_1_result.xml"
        path.write_text("<Something/>")

        with pytest.raises(ResponseParseError):
            parser.parse(path)

    def test_missing_trades(self, parser, tmp_path):
        path = tmp_path / "580_FX_SPOT_1_result.xml"
        path.write_text('<CalypsoAcknowledgement Rejected="0"/>')

        with pytest.raises(ResponseParseError):
            parser.parse(path)


class TestParserFor:
    """Test parser lookup."""

    def test_known_systems(self):
        assert isinstance(parser_for(SystemCode.MX3), Mx3ResponseParser)
        assert isinstance(parser_for("CALYPSO"), CalypsoResponseParser)

    def test_system_without_files(self):
        with pytest.raises(ValueError):
            parser_for(SystemCode.VOLBROKER_STP)
