import json
import litellm
from src.utils.constants import SUMMARY_TEMPERATURE, PROVIDER_TIMEOUT
from src.utils.exceptions import SummarizationError
from src.utils.logger import get_logger


class RollupSummarizer:
    def __init__(self, model, label, language, max_chars, temperature=SUMMARY_TEMPERATURE,
                 timeout=PROVIDER_TIMEOUT):
        self.model = model
        self.label = label
        self.language = language
        self.max_chars = max_chars
        self.temperature = temperature
        self.timeout = timeout
        self.logger = get_logger("rollup summarizer")

    def _rules(self):
        return [
            f"Write in {self.language}",
            f"At most {self.max_chars} characters (preferably under {self.max_chars * 4 // 5})",
            "Balance good points, bad points, caveats and who it suits",
            "Do not include personal names",
            "Bullet points are fine; prioritize readability"
        ]

    def _messages(self, previous_summary, new_items):
        payload = {
            "previous_summary": previous_summary,
            "new_reviews": list(new_items),
            "rules": self._rules()
        }
        return [
            {
                "role": "system",
                "content": f"You summarize {self.label} reviews. Merge the previous summary and the new "
                           f"review bodies into one up-to-date combined summary. Reply with the summary only."
            },
            {"role": "user", "content": json.dumps(payload, ensure_ascii=False)}
        ]

    def summarize(self, previous_summary, new_items):
        self.logger.info(f"Summarizing {len(new_items)} new {self.label} reviews with {self.model}")
        try:
            response = litellm.completion(
                model=self.model,
                messages=self._messages(previous_summary, new_items),
                temperature=self.temperature,
                timeout=self.timeout
            )
        except Exception as e:
            self.logger.error(f"Error [{e}]: summary completion failed")
            raise SummarizationError(f"summary completion failed: {e}") from e

        summary = (response.choices[0].message.content or "").strip()
        if not summary:
            raise SummarizationError("summary completion returned no text")

        if len(summary) > self.max_chars:
            self.logger.warning(f"Summary of {len(summary)} chars capped to {self.max_chars}")
            summary = summary[:self.max_chars].rstrip()

        return summary


def build_summarizer(config, kind):
    return RollupSummarizer(
        model=config.summary_model,
        label=kind.label,
        language=config.summary_language,
        max_chars=config.summary_max_chars
    )
