from __future__ import annotations

import pytest

from zemdocs.models.document import Document, DocumentType
from zemdocs.models.nfse import ConsultarXMLRequest, RawRecord


class TestRawRecord:
    def test_from_dict(self):
        rec = RawRecord.from_dict(
            {
                "NrNfse": 240000093,
                "DtEmissao": "2024-08-15 10:30:00",
                "NrCompetencia": 202408,
                "XmlCompactado": "UEsDB...",
            }
        )
        assert rec.numero_nfse == 240000093
        assert rec.competencia == 202408
        assert rec.dt_emissao == "2024-08-15 10:30:00"

    def test_optional_keys_are_zero_values(self):
        rec = RawRecord.from_dict({"NrNfse": 1})
        assert rec.competencia == 0
        assert rec.xml_compactado == ""

    @pytest.mark.parametrize("d", [{}, {"NrNfse": None}, {"NrNfse": 0}, {"NrNfse": -5}])
    def test_missing_or_non_positive_number_raises(self, d):
        with pytest.raises(ValueError, match="NrNfse"):
            RawRecord.from_dict(d)

    def test_non_numeric_number_raises(self):
        with pytest.raises(ValueError):
            RawRecord.from_dict({"NrNfse": "abc"})


class TestConsultarXMLRequest:
    def test_number_range_wins(self):
        req = ConsultarXMLRequest(
            nr_inicial="1", nr_final="9", dt_inicial="2024-01-01", dt_final="2024-01-31"
        )
        assert req.params() == {"nr_inicial": "1", "nr_final": "9"}

    def test_date_range_over_competencia(self):
        req = ConsultarXMLRequest(
            dt_inicial="2024-01-01", dt_final="2024-01-31", nr_competencia="202401"
        )
        assert "nr_competencia" not in req.params()

    def test_competencia_without_page(self):
        assert ConsultarXMLRequest(nr_competencia="202401").params() == {
            "nr_competencia": "202401"
        }

    def test_half_range_falls_through(self):
        req = ConsultarXMLRequest(nr_inicial="1", nr_competencia="202401", nr_page="2")
        assert req.params() == {"nr_competencia": "202401", "nr_page": "2"}

    def test_no_mode(self):
        with pytest.raises(ValueError):
            ConsultarXMLRequest(nr_page="1").params()


class TestDocumentType:
    def test_values(self):
        assert [t.value for t in DocumentType] == ["NFS-e", "NF-e", "NFC-e", "CT-e", "MDF-e"]

    def test_display_name(self):
        assert DocumentType.NFSE.display_name == "Nota Fiscal de Serviço Eletrônica"

    def test_is_nfse(self):
        assert Document(numero_documento="1", document_type="NFS-e").is_nfse
        assert not Document(numero_documento="1", document_type="NF-e").is_nfse
