"""
Prompt templates for quiz generation and answer scoring.

Both builders are pure: the same inputs always render the same text.
"""

import json
from typing import Dict, List, Sequence

TRUNCATION_MARKER = "[... content truncated ...]"

GENERATION_PROMPT = """You are an assistant that writes educational quizzes.

Based on the content below (titled {title}), write exactly {count} distinct quiz questions with their correct answers.
Focus on the most important concepts, facts and takeaways of the text. Each question must be answerable from the text.

OUTPUT FORMAT:
Respond with ONLY a JSON array of exactly {count} objects. Each object has exactly two keys, both strings:
  "question": the quiz question
  "answer": the correct answer

Example:
[
  {{"question": "What is the main topic discussed?", "answer": "The main topic is ..."}},
  {{"question": "Name a key concept from the text.", "answer": "A key concept is ..."}}
]

RULES:
1. The array must contain exactly {count} objects.
2. No introduction, explanation, commentary or closing remarks.
3. No markdown and no code fences; the whole response is the JSON array.

CONTENT:
---
{content}
---
"""

SCORING_PROMPT = """You are a grading assistant. Evaluate a learner's quiz answers against ideal answers.

Judge meaning, not wording: an answer is correct when it captures the main point of the ideal answer,
even if phrased differently. A blank or whitespace-only answer is always incorrect.

OUTPUT FORMAT:
Respond with ONLY a JSON array with one object per submitted answer, in submission order.
Each object has exactly three keys:
  "question": string, the question being evaluated
  "userAnswer": string, the learner's answer exactly as submitted
  "isCorrect": boolean, your verdict

Example:
[
  {{"question": "What is the capital of France?", "userAnswer": "The capital city is Paris.", "isCorrect": true}},
  {{"question": "What is 2 + 2?", "userAnswer": "3", "isCorrect": false}}
]

No prose, no markdown and no code fences outside the array.

QUIZ DATA:
---
{payload}
---
"""


def truncate_content(text: str, max_chars: int) -> str:
    """
    Cut `text` to the `max_chars` budget and mark the cut with TRUNCATION_MARKER.

    The cut falls on the last whitespace before the budget when there is one,
    so words are not split.
    """
    if len(text) <= max_chars:
        return text
    budget = max(0, max_chars - len(TRUNCATION_MARKER) - 1)
    head = text[:budget]
    space = head.rfind(" ")
    if space > budget // 2:
        head = head[:space]
    return head.rstrip() + "\n" + TRUNCATION_MARKER


# PUBLIC_INTERFACE
def build_generation_prompt(title: str, content_text: str, question_count: int, max_content_chars: int) -> str:
    """
    Render the quiz generation prompt.

    Args:
        title: Content title; quoted into the prompt.
        content_text: Plain text extracted from the content.
        question_count: Exact number of question/answer pairs requested.
        max_content_chars: Character budget for the embedded content.

    Returns:
        str: Prompt text.
    """
    return GENERATION_PROMPT.format(
        title=json.dumps(title or "Untitled Content", ensure_ascii=False),
        count=question_count,
        content=truncate_content(content_text, max_content_chars),
    )


# PUBLIC_INTERFACE
def build_scoring_prompt(answer_key: Sequence[Dict[str, str]], submissions: Sequence[Dict[str, str]]) -> str:
    """
    Render the answer scoring prompt.

    Args:
        answer_key: [{"question": ..., "idealAnswer": ...}, ...]
        submissions: [{"question": ..., "submittedAnswer": ...}, ...]

    Returns:
        str: Prompt text.
    """
    payload: Dict[str, List[Dict[str, str]]] = {
        "questionsAndIdealAnswers": [
            {"question": item["question"], "idealAnswer": item["idealAnswer"]} for item in answer_key
        ],
        "userSubmissions": [
            {"question": item["question"], "submittedAnswer": item["submittedAnswer"]} for item in submissions
        ],
    }
    return SCORING_PROMPT.format(payload=json.dumps(payload, indent=2, ensure_ascii=False))
