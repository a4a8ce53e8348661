"""
Tests for the structural fold over classified lines.
"""

from models import define_rubric
from utils.structural_parser import parse_structure, split_lines


class TestSplitLines:
    """Line endings are normalised before folding."""

    def test_mixed_line_endings(self):
        assert split_lines("a\r\nb\rc\nd") == ["a", "b", "c", "d"]


class TestSections:
    """Section opening, closing and ordering."""

    def test_sections_in_order_of_appearance(self, two_section_rubric):
        text = "\n".join(
            [
                "B (Peso Total: 5 pontos)",
                "- Outra? (5 pontos): 5",
                "A (Peso Total: 10 pontos)",
                "- Pergunta? (10 pontos): 7",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert [section.title for section in parsed.sections] == ["B", "A"]
        assert parsed.structural_sum == 12

    def test_criteria_before_any_header_open_implicit_section(self, two_section_rubric):
        parsed = parse_structure("- Clareza: 7/10\n- Coesão: 3/5", two_section_rubric)
        assert len(parsed.sections) == 1
        section = parsed.sections[0]
        assert section.title == "General Criteria"
        assert section.max_points == 15
        assert [criterion.text for criterion in section.criteria] == ["Clareza", "Coesão"]

    def test_configured_criterion_without_header_opens_its_section(self, two_section_rubric):
        parsed = parse_structure("- Pergunta? (10 pontos): 10", two_section_rubric)
        assert parsed.sections[0].title == "A"
        assert parsed.sections[0].max_points == 10

    def test_header_without_criteria_is_dropped_and_reported(self, two_section_rubric):
        text = "\n".join(
            [
                "A (Peso Total: 10 pontos)",
                "B (Peso Total: 5 pontos)",
                "- Outra? (5 pontos): 5",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert [section.title for section in parsed.sections] == ["B"]
        assert "A (Peso Total: 10 pontos)" in parsed.unclassified_lines

    def test_justification_line_attaches_to_previous_criterion(self, two_section_rubric):
        text = "\n".join(
            [
                "A (Peso Total: 10 pontos)",
                "- Pergunta? (10 pontos): 10",
                "Justificativa: o monitor perguntou.",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert parsed.sections[0].criteria[0].justification == "o monitor perguntou."


class TestPenalties:
    """Penalty lines are grouped in penalty sections."""

    def test_penalty_line_after_regular_section_opens_penalty_section(self, two_section_rubric):
        text = "\n".join(
            [
                "A (Peso Total: 10 pontos)",
                "- Pergunta? (10 pontos): 10",
                "- Uso de linguagem informal ou inadequada? (-10 pontos se sim, 0 se não): -10",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert [section.title for section in parsed.sections] == ["A", "Redutor de Linguagem"]
        penalty = parsed.sections[1]
        assert penalty.is_penalty is True
        assert penalty.awarded_points == -10
        assert parsed.structural_sum == 0

    def test_unconfigured_penalty_uses_default_title(self):
        rubric = define_rubric([{"title": "Conteúdo", "max_points": 10}])
        parsed = parse_structure("- Atraso (-5 pontos): -5", rubric)
        assert parsed.sections[0].title == "Penalties"
        assert parsed.sections[0].is_penalty is True

    def test_criterion_after_penalty_section_leaves_it(self, two_section_rubric):
        text = "\n".join(
            [
                "**Redutor de Linguagem**",
                "- Uso de linguagem informal ou inadequada? (-10 pontos se sim, 0 se não): 0",
                "- Outra? (5 pontos): 5",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert [section.title for section in parsed.sections] == ["Redutor de Linguagem", "B"]
        assert parsed.sections[1].is_penalty is False


class TestSummaryAndDeclaredScore:
    """Summary accumulation and the declared total."""

    def test_summary_keeps_paragraph_breaks(self, two_section_rubric):
        text = "\n".join(
            [
                "- Pergunta? (10 pontos): 10",
                "**Resumo da Análise:** Primeiro parágrafo.",
                "",
                "Segundo parágrafo.",
                "",
                "",
                "FINAL_SCORE: 10",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert parsed.summary == "Primeiro parágrafo.\n\nSegundo parágrafo."
        assert parsed.declared_score == 10

    def test_summary_stops_at_next_structural_line(self, two_section_rubric):
        text = "\n".join(
            [
                "Resumo da Análise:",
                "Texto do resumo.",
                "B (Peso Total: 5 pontos)",
                "- Outra? (5 pontos): 5",
                "linha solta",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert parsed.summary == "Texto do resumo."
        assert parsed.unclassified_lines == ("linha solta",)

    def test_scored_lines_inside_summary_stay_in_summary(self, two_section_rubric):
        text = "\n".join(
            [
                "A (Peso Total: 10 pontos)",
                "- Pergunta? (10 pontos): 10",
                "**Resumo da Análise:**",
                "O monitor foi bem.",
                "- Nota geral do aluno: 8/10",
                "Justificativa: ficou faltando meta.",
                "FINAL_SCORE: 10",
            ]
        )
        parsed = parse_structure(text, two_section_rubric)
        assert parsed.summary == (
            "O monitor foi bem.\n- Nota geral do aluno: 8/10\nJustificativa: ficou faltando meta."
        )
        assert [len(section.criteria) for section in parsed.sections] == [1]
        assert parsed.sections[0].criteria[0].justification == ""
        assert parsed.structural_sum == 10
        assert parsed.declared_score == 10

    def test_last_declared_score_wins(self, two_section_rubric):
        parsed = parse_structure("FINAL_SCORE: 10\nFINAL_SCORE: 12", two_section_rubric)
        assert parsed.declared_score == 12
        assert parsed.sections == ()

    def test_no_summary_marker_gives_none(self, two_section_rubric):
        parsed = parse_structure("- Pergunta? (10 pontos): 10", two_section_rubric)
        assert parsed.summary is None


class TestSampleResponse:
    """A complete answer for the shipped rubric."""

    def test_full_response(self, sample_rubric, sample_response):
        parsed = parse_structure(sample_response, sample_rubric)
        assert [section.title for section in parsed.sections] == [
            "Progresso do Aluno",
            "Qualidade do Atendimento",
            "Engajamento e Motivação",
            "Registro de Sinais de Risco",
            "Feedback ao Aluno",
            "Redutor de Linguagem",
        ]
        assert [section.awarded_points for section in parsed.sections] == [40, 15, 10, 10, 10, 0]
        assert parsed.structural_sum == 85
        assert parsed.declared_score == 85
        assert parsed.unclassified_lines == ()
        first = parsed.sections[0].criteria[0]
        assert first.justification == "O monitor abriu perguntando como foi a semana."
