"""Randomized pauses and input cadence that make driven sessions look manual."""

from __future__ import annotations
from tracking import t

import asyncio
import random
from typing import Any, Optional, Tuple

from infrastructure.constants import QUICK_PAUSE_RANGE


class HumanBehavior:
    """Timing and pointer helpers shared by the driver and the engine."""

    def __init__(
        self,
        *,
        speed_multiplier: float = 1.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        t('automation.driver.human_behaviors.HumanBehavior.__init__')
        self.speed_multiplier = speed_multiplier
        self._rng = rng or random.Random()
        self._last_mouse_pos: Optional[Tuple[float, float]] = None

    # ------------------------------------------------------------------
    # Timing helpers
    # ------------------------------------------------------------------
    def _apply_speed(self, value: float) -> float:
        return max(0.0, value / self.speed_multiplier)

    def pick_delay(self, minimum: float, maximum: float) -> float:
        t('automation.driver.human_behaviors.HumanBehavior.pick_delay')
        return self._apply_speed(self._rng.uniform(minimum, maximum))

    async def pause(self, minimum: float, maximum: float) -> float:
        """Sleep for a random duration in ``[minimum, maximum]``; returns it."""
        t('automation.driver.human_behaviors.HumanBehavior.pause')
        delay = self.pick_delay(minimum, maximum)
        await asyncio.sleep(delay)
        return delay

    async def quick_pause(self) -> float:
        t('automation.driver.human_behaviors.HumanBehavior.quick_pause')
        return await self.pause(*QUICK_PAUSE_RANGE)

    # ------------------------------------------------------------------
    # Input helpers (Playwright element handles)
    # ------------------------------------------------------------------
    async def type_text(
        self,
        element: Any,
        text: str,
        *,
        base_delay_range: Tuple[int, int] = (60, 160),
    ) -> None:
        t('automation.driver.human_behaviors.HumanBehavior.type_text')
        await element.click()
        await self.pause(0.1, 0.3)
        await element.fill("")
        for char in text or "":
            delay = max(20, int(self._rng.randint(*base_delay_range) / self.speed_multiplier))
            await element.type(char, delay=delay)
        await self.pause(0.2, 0.5)

    async def move_mouse_to(self, page: Any, element: Any) -> None:
        """Glide the pointer onto ``element`` in a few eased steps."""
        t('automation.driver.human_behaviors.HumanBehavior.move_mouse_to')
        box = await element.bounding_box()
        if not box:
            return

        target_x = box["x"] + box["width"] * self._rng.uniform(0.35, 0.65)
        target_y = box["y"] + box["height"] * self._rng.uniform(0.4, 0.7)
        start_x, start_y = self._last_mouse_pos or (target_x - 120, target_y + 80)

        steps = self._rng.randint(6, 12)
        for i in range(1, steps + 1):
            ratio = i / steps
            eased = ratio * ratio * (3 - 2 * ratio)
            await page.mouse.move(
                start_x + (target_x - start_x) * eased,
                start_y + (target_y - start_y) * eased,
            )
            await asyncio.sleep(self._apply_speed(self._rng.uniform(0.01, 0.035)))
        self._last_mouse_pos = (target_x, target_y)

    async def click_naturally(self, page: Any, element: Any) -> None:
        t('automation.driver.human_behaviors.HumanBehavior.click_naturally')
        await self.move_mouse_to(page, element)
        await self.pause(0.08, 0.25)
        await element.click()
