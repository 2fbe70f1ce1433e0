from __future__ import annotations

import logging

from selenium.common.exceptions import (
    InvalidSelectorException,
    NoSuchElementException,
    StaleElementReferenceException,
)
from selenium.webdriver.common.by import By

from reviewpin.config.schema import TrackingSettings
from reviewpin.core.exceptions import LocatorInvalid
from reviewpin.core.locators import marker_selector
from reviewpin.core.metadata import AnchorDescriptor, LocatorTier, Resolution, ResolutionOutcome

log = logging.getLogger(__name__)


class IdentityResolver:
    """Re-locates the element an anchor descriptor was captured from.

    Tiers run in priority order: stable id, CSS selector, XPath. A stable
    id match whose text disagrees with the snapshot fails closed; a
    selector mismatch falls through to the XPath tier.
    """

    def __init__(self, driver, settings: TrackingSettings) -> None:
        self.driver = driver
        self.settings = settings

    def resolve(self, descriptor: AnchorDescriptor) -> Resolution:
        if not descriptor.has_locator:
            return Resolution(outcome=ResolutionOutcome.NO_LOCATOR)

        invalid: list[str] = []
        mismatched = False

        if descriptor.stable_id:
            selector = marker_selector(self.settings.marker_attribute, descriptor.stable_id)
            candidate = self._first_match(By.CSS_SELECTOR, selector, invalid)
            if candidate is not None:
                if self._text_matches(candidate, descriptor.text_snapshot):
                    return Resolution(candidate, LocatorTier.STABLE_ID, ResolutionOutcome.FOUND, invalid)
                log.debug("Stable id %s matched an element with different text", descriptor.stable_id)
                return Resolution(None, LocatorTier.STABLE_ID, ResolutionOutcome.TEXT_MISMATCH, invalid)

        if descriptor.css_selector:
            candidate = self._first_match(By.CSS_SELECTOR, descriptor.css_selector, invalid)
            if candidate is not None:
                if self._text_matches(candidate, descriptor.text_snapshot):
                    return Resolution(candidate, LocatorTier.CSS_SELECTOR, ResolutionOutcome.FOUND, invalid)
                mismatched = True

        if descriptor.xpath:
            candidate = self._first_match(By.XPATH, descriptor.xpath, invalid)
            if candidate is not None:
                if self._text_matches(candidate, descriptor.text_snapshot):
                    return Resolution(candidate, LocatorTier.XPATH, ResolutionOutcome.FOUND, invalid)
                return Resolution(None, LocatorTier.XPATH, ResolutionOutcome.TEXT_MISMATCH, invalid)

        outcome = ResolutionOutcome.TEXT_MISMATCH if mismatched else ResolutionOutcome.NOT_FOUND
        return Resolution(None, None, outcome, invalid)

    def _first_match(self, by: str, locator: str, invalid: list[str]):
        try:
            return self.query(by, locator)
        except LocatorInvalid as exc:
            log.warning("Invalid %s locator %r: %s", "xpath" if by == By.XPATH else "selector", locator, exc)
            invalid.append(locator)
            return None

    def query(self, by: str, locator: str):
        """Returns the first element in document order, or None.

        Raises ``LocatorInvalid`` when the browser rejects the locator.
        """

        try:
            matches = self.driver.find_elements(by, locator)
        except InvalidSelectorException as exc:
            raise LocatorInvalid(str(exc)) from exc
        except NoSuchElementException:
            return None
        return matches[0] if matches else None

    @staticmethod
    def _text_matches(element, text_snapshot: str | None) -> bool:
        if not text_snapshot:
            return True
        try:
            current = element.get_property("textContent") or ""
        except StaleElementReferenceException:
            return False
        return current.strip() == text_snapshot
