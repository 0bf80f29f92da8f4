"""
LLM-powered roster generator for the Clinic Token Scheduler.
STRATEGY: one request per roster, strong schema prompt, then per-item
validation so a single malformed doctor never sinks the batch.
"""

import os
import json
import logging
import re
import google.generativeai as genai
from typing import List, Tuple, Any, Optional
from datetime import date
from pydantic import ValidationError

from clinic_models import Doctor, DayOfWeek

logger = logging.getLogger(__name__)

VALID_DAYS = [d.value for d in DayOfWeek]


class DataGenerator:
    def __init__(self, api_key: Optional[str] = None, model_name: str = "gemini-2.5-flash"):
        self.api_key = api_key or os.environ.get("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError("GOOGLE_API_KEY not found. Please set it in environment.")

        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(model_name)
        self.total_cost = 0.0

    def _estimate_cost(self, prompt_tokens: int, response_tokens: int) -> float:
        return (prompt_tokens * 0.075 + response_tokens * 0.30) / 1_000_000

    def _robust_parse_json(self, raw_text: str) -> List[Any]:
        """
        Strips Markdown fences and normalizes the response to a list of objects.
        """
        if not raw_text:
            return []

        clean_text = re.sub(r"```json\s*|\s*```", "", raw_text).strip()

        try:
            data = json.loads(clean_text)
        except json.JSONDecodeError:
            # Fallback: pull out the outermost list
            match = re.search(r'(\[.*\])', clean_text, re.DOTALL)
            if not match:
                return []
            try:
                data = json.loads(match.group(1))
            except json.JSONDecodeError:
                return []

        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ['doctors', 'roster', 'result']:
                if key in data and isinstance(data[key], list):
                    return data[key]
            return [data]
        return []

    def _normalize_doctor(self, item: dict, index: int) -> dict:
        """Light clean-up of the fields models most often get wrong."""
        item.setdefault('id', f"doc_{index:03d}")
        availability = item.get('availability') or {}
        if isinstance(availability, dict):
            item['availability'] = {
                str(day).strip().title(): sessions
                for day, sessions in availability.items()
                if str(day).strip().title() in VALID_DAYS
            }
        if 'consultation_status' in item:
            item['consultation_status'] = str(item['consultation_status']).strip().title()
        return item

    def generate_doctors(self, count: int = 5, start_date: Optional[date] = None) -> Tuple[List[Doctor], float]:
        """
        Generates a clinic roster with weekly sessions.
        """
        if start_date is None:
            start_date = date.today()

        prompt = f"""
        Generate {count} outpatient doctors for a clinic roster starting {start_date}.

        OUTPUT FORMAT:
        A single valid JSON Array containing {count} objects.

        STRICT SCHEMA RULES:
        1. "id": STRING, e.g. "doc_001".
        2. "name": STRING, e.g. "Dr. Kavya Rao".
        3. "average_consulting_time": INTEGER minutes, one of 5, 10, 15, 20.
        4. "consultation_status": "Out".
        5. "availability": OBJECT keyed by weekday name.
           VALID KEYS: {json.dumps(VALID_DAYS)}
           Each value is a list of sessions: {{ "from": "09:00 AM", "to": "01:00 PM", "label": "Morning" }}
           - Times MUST be "hh:mm AM" / "hh:mm PM".
           - "to" MUST be later than "from".
           - At most 2 sessions per day, never overlapping.
        6. Give each doctor at least 3 working days. Leave at least one day off.
        """

        logger.info(f"Requesting roster of {count} doctors...")

        try:
            generation_config = genai.GenerationConfig(
                response_mime_type="application/json",
                max_output_tokens=8000,
                temperature=0.7
            )
            response = self.model.generate_content(prompt, generation_config=generation_config)

            cost = 0.0
            usage = getattr(response, 'usage_metadata', None)
            if usage is not None:
                cost = self._estimate_cost(usage.prompt_token_count, usage.candidates_token_count)
            self.total_cost += cost

            raw_data = self._robust_parse_json(response.text)
        except Exception as e:
            logger.error(f"Roster generation failed: {e}")
            return [], 0.0

        doctors = []
        for i, item in enumerate(raw_data):
            if not isinstance(item, dict):
                continue
            try:
                doctors.append(Doctor(**self._normalize_doctor(item, i)))
            except ValidationError as e:
                logger.warning(f"Skipping invalid doctor {i}: {e.json()}")
                continue

        logger.info(f"Generated {len(doctors)} doctors (est. cost ${cost:.4f}).")
        return doctors, cost
