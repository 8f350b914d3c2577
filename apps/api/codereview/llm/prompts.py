"""System prompts for the AI review stage.

The built-in prompts can be overridden with a file per prompt. ``.html``
prompt files (as exported from a document editor) are converted to plain
text; ``.md``/``.txt`` files are used as is.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path

from bs4 import BeautifulSoup


logger = logging.getLogger(__name__)

# =============================================================================
# Built-in Prompts
# =============================================================================

REPORT_SYSTEM_PROMPT = """Ты опытный ревьюер учебных проектов. Тебе передают структуру проекта,
содержимое файлов и результаты автоматических проверок. Составь отчёт для студента.

Для каждой найденной ошибки используй строго такой формат:

Ошибка №<номер>
Файл: <путь к файлу относительно корня проекта>
Фрагмент:
<<точный фрагмент кода из файла, без изменений>>
Комментарий: <что не так и как исправить>

Правила:
- Фрагмент копируй из файла символ в символ, иначе его не удастся найти.
- Если проблем несколько в одном месте, можно указать несколько фрагментов <<...>>.
- Нумеруй ошибки по порядку, начиная с 1.
- В конце дай краткое общее резюме по проекту."""


CLASSIFIER_SYSTEM_PROMPT = """Ты классификатор отчётов ревью. По тексту отчёта реши,
нужно ли вернуть работу студенту на доработку или её можно передать ревьюеру.

Ответь одним словом:
- send_back, если в отчёте есть ошибки, которые студент должен исправить;
- to_reviewer, если работа готова к ревью."""


REPORT_USER_TEMPLATE = """## Структура проекта
{tree}

## Результаты проверок
{checks}

## Файлы
{files}"""


# =============================================================================
# Loading
# =============================================================================

BLOCK_TAGS = (
    "p", "div", "section", "article", "header", "footer", "main", "aside", "nav",
    "table", "tr", "td", "th", "h1", "h2", "h3", "h4", "h5", "h6", "pre",
)
TRAILING_WS = re.compile(r"[ \t]+\n")
EXCESS_BLANK_LINES = re.compile(r"\n{3,}")


def normalize_markers(text: str) -> str:
    """Collapse ``<<<``/``>>>`` into the ``<<``/``>>`` fragment markers."""
    return text.replace("<<<", "<<").replace(">>>", ">>")


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for li in soup.find_all("li"):
        li.insert_before("\n- ")
    for tag in soup.find_all(list(BLOCK_TAGS)):
        tag.insert_before("\n")
        tag.insert_after("\n")

    text = soup.get_text().replace("\r", "").replace("\xa0", " ")
    text = TRAILING_WS.sub("\n", text)
    text = EXCESS_BLANK_LINES.sub("\n\n", text).strip()
    return normalize_markers(text)


@lru_cache(maxsize=16)
def _read_prompt(path: str) -> str:
    raw = Path(path).read_text(encoding="utf-8")
    if path.lower().endswith((".html", ".htm")):
        return html_to_text(raw)
    return normalize_markers(raw.strip())


def load_prompt(path: str | Path | None, default: str) -> str:
    """Return the prompt stored at ``path``, or ``default`` when unset.

    An unreadable override is logged and the default is used.
    """
    if path is None:
        return default
    resolved = str(Path(path).expanduser().resolve())
    try:
        return _read_prompt(resolved)
    except OSError as e:
        logger.warning(f"Could not read prompt {resolved}: {e}; using built-in prompt")
        return default
