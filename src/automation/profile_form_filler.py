"""Fill forms on behalf of a profile, learning templates along the way."""

import logging

from pydantic import BaseModel

from src.automation.exceptions import FormNotFoundError, TemplateNotFoundError
from src.automation.field_mapper import FieldMapper, calculate_mapping_confidence
from src.automation.form_detector import FormDetector
from src.automation.form_filler import FormFiller
from src.automation.models import FillResult, FormTemplate, ProfileData, ProfileFillResult
from src.automation.template_repository import TemplateRepository

logger = logging.getLogger(__name__)


class ProfileFillerConfig(BaseModel):
    """Profile filling settings."""

    auto_detect_fields: bool = True
    use_ai_mapping: bool = False  # no-op, mapping is rule-based
    verify_submission: bool = False


def observed_success_rate(fill_result: FillResult) -> float:
    """Rate fed back into the template after an attempt.

    A verified submission counts as full success and a fill that did
    nothing useful as zero; otherwise the share of fields filled.
    """
    if fill_result.submission is not None and fill_result.submission.success:
        return 100.0
    if not fill_result.success:
        return 0.0
    return fill_result.success_rate


class ProfileFormFiller:
    """Resolve a template, map the profile, fill, and record the outcome."""

    def __init__(
        self,
        detector: FormDetector,
        filler: FormFiller,
        repository: TemplateRepository,
        mapper: FieldMapper | None = None,
        config: ProfileFillerConfig | None = None,
    ) -> None:
        self.detector = detector
        self.filler = filler
        self.repository = repository
        self.config = config or ProfileFillerConfig()
        self.mapper = mapper or FieldMapper(use_ai_mapping=self.config.use_ai_mapping)

    async def resolve_template(self, url: str, template: FormTemplate | None = None) -> FormTemplate:
        """Given template, else stored template, else detect and persist a new one.

        Raises:
            TemplateNotFoundError: If nothing is stored and detection is disabled
            FormNotFoundError: If detection finds no form
        """
        if template is not None:
            return template

        try:
            return await self.repository.find_best_template(url)
        except TemplateNotFoundError:
            if not self.config.auto_detect_fields:
                raise

        logger.info(f"No stored template for {url}, detecting forms")
        analysis = await self.detector.analyze_page(url)
        if not analysis.forms:
            raise FormNotFoundError(f"No forms detected on {url}")

        detected = self.detector.generate_form_template(analysis.forms[0], url)
        await self.repository.save(detected)
        logger.info(f"Learned template {detected.id} with {len(detected.fields)} fields")
        return detected

    async def fill_form_with_profile(
        self,
        url: str,
        profile: ProfileData,
        template: FormTemplate | None = None,
        submit: bool | None = None,
        screenshots: bool | None = None,
    ) -> ProfileFillResult:
        """Fill the form at ``url`` with the profile's data.

        Args:
            url: Page holding the form
            profile: Profile supplying values
            template: Template to use instead of looking one up
            submit: Override of ``verify_submission``
            screenshots: Override of the filler's screenshot setting

        Raises:
            NavigationError: If the page does not load
            FormNotFoundError: If no form could be detected
            TemplateNotFoundError: If no template exists and detection is disabled
        """
        template = await self.resolve_template(url, template)
        if template.url != url:
            # Domain-level template applied to a sibling page
            template = template.model_copy(update={"url": url})

        mapping = self.mapper.map_profile_to_fields(profile, template.fields)
        warnings = self.mapper.validate_field_mapping(mapping, template.fields)
        for warning in warnings:
            logger.debug(f"Mapping warning for {url}: {warning}")

        do_submit = self.config.verify_submission if submit is None else submit
        fill_result = await self.filler.fill_form(
            template, mapping, submit=do_submit, screenshots=screenshots
        )

        try:
            await self.repository.update_success(template.id, observed_success_rate(fill_result))
        except TemplateNotFoundError:
            # Caller-supplied templates need not be stored
            logger.debug(f"Template {template.id} is not stored; success rate not recorded")

        return ProfileFillResult(
            fill_result=fill_result,
            profile_id=profile.id,
            template_used=template.id,
            field_mappings=mapping,
            unmapped_fields=self.mapper.unmapped_fields(mapping, template.fields),
            warnings=[str(w) for w in warnings],
            submission_result=fill_result.submission,
            confidence=calculate_mapping_confidence(mapping, template.fields),
        )
