"""
Shared pytest fixtures for the evaluation parser and pipeline tests.

Rubrics are built in code so each test states exactly the vocabulary it
relies on; the sample rubric shipped in ``rubrics/`` is loaded from disk.
"""

from pathlib import Path

import pytest

from models import RubricSchema, define_rubric
from utils.rubric_loader import load_rubric

REPO_ROOT = Path(__file__).resolve().parent.parent
SAMPLE_RUBRIC_PATH = REPO_ROOT / "rubrics" / "mentoring_meeting.json"


# ============================================================================
# RUBRIC FIXTURES
# ============================================================================


@pytest.fixture
def two_section_rubric() -> RubricSchema:
    """Two plain sections with one criterion each and a language penalty."""
    return define_rubric(
        [
            {
                "title": "A",
                "max_points": 10,
                "criteria": [{"label": "Pergunta?", "max_points": 10}],
            },
            {
                "title": "B",
                "max_points": 5,
                "criteria": [{"label": "Outra?", "max_points": 5}],
            },
            {
                "title": "Redutor de Linguagem",
                "max_points": -10,
                "is_penalty": True,
                "criteria": [
                    {"label": "Uso de linguagem informal ou inadequada?", "max_points": -10}
                ],
            },
        ],
        summary_pattern="Resumo da Análise",
        final_score_pattern="FINAL_SCORE",
    )


@pytest.fixture
def sample_rubric_path() -> Path:
    """Location of the rubric shipped with the repository."""
    return SAMPLE_RUBRIC_PATH


@pytest.fixture
def sample_rubric() -> RubricSchema:
    """The mentoring meeting rubric shipped with the repository."""
    return load_rubric(SAMPLE_RUBRIC_PATH)


# ============================================================================
# TEXT FIXTURES
# ============================================================================


@pytest.fixture
def sample_response() -> str:
    """A well-formed generator answer for the sample rubric (total 85)."""
    return "\n".join(
        [
            "**1. Progresso do Aluno (Peso Total: 50 pontos)**",
            "- Perguntou sobre a semana do aluno? (5 pontos): 5 (O monitor abriu perguntando como foi a semana.)",
            "- Verificou a conclusão da meta anterior? (10 pontos): 10",
            "- Estipulou uma nova meta para o aluno? (10 pontos): 0 (Nenhuma meta nova foi definida.)",
            "- Perguntou sobre o conteúdo estudado? (20 pontos): 20",
            "- Perguntou sobre os exercícios? (5 pontos): 5",
            "",
            "**2. Qualidade do Atendimento (Peso Total: 15 pontos)**",
            "- Esclareceu todas as dúvidas corretamente? (10 pontos): 10",
            "- Demonstrou boa condução e organização? (5 pontos): 5",
            "",
            "**3. Engajamento e Motivação (Peso Total: 15 pontos)**",
            "- Incentivou o aluno a se manter no curso? (5 pontos): 5",
            "- Reforçou a importância das metas e encontros? (5 pontos): 0",
            "- Ofereceu apoio extra (dicas, recursos)? (5 pontos): 5",
            "",
            "**4. Registro de Sinais de Risco (Peso Total: 10 pontos)**",
            "- Conduziu corretamente casos de desmotivação ou risco? (10 pontos): 10",
            "",
            "**5. Feedback ao Aluno (Peso Total: 10 pontos)**",
            "- Reconheceu conquistas e avanços do aluno? (5 pontos): 5",
            "- Feedback sobre a meta (5 pontos): 5",
            "",
            "**Redutor de Linguagem**",
            "- Uso de linguagem informal ou inadequada? (-10 pontos se sim, 0 se não): 0",
            "",
            "**Resumo da Análise:**",
            "O monitor conduziu bem a reunião.",
            "",
            "Faltou definir uma nova meta.",
            "",
            "FINAL_SCORE: 85",
        ]
    )
