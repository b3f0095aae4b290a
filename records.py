import logging
from datetime import date

from errors import IntegrityViolation, ValidationFailure
from models import (
    BeneficiaryCreate,
    BeneficiaryUpdate,
    VaccinationCreate,
    VaccinationQuery,
    WriteResult,
)
from store import RecordStore

logger = logging.getLogger(__name__)

REQUIRED_BENEFICIARY_FIELDS = ("name", "date_of_birth", "gender", "district_id")


class RecordService:
    """Beneficiary and vaccination writes with the checks that keep references intact."""

    def __init__(self, store: RecordStore, today: date):
        self.store = store
        self.today = today

    async def _check_location(self, district_id, block_id):
        if await self.store.get_district(district_id) is None:
            raise ValidationFailure(f"Unknown district '{district_id}'.")
        if block_id:
            blocks = await self.store.get_blocks(district_id)
            if block_id not in {b.id for b in blocks}:
                raise ValidationFailure(f"Block '{block_id}' does not belong to district '{district_id}'.")

    async def add_beneficiary(self, beneficiary: BeneficiaryCreate) -> WriteResult:
        if beneficiary.date_of_birth > self.today:
            raise ValidationFailure("Date of birth cannot be in the future.")
        await self._check_location(beneficiary.district_id, beneficiary.block_id)
        return await self.store.insert_beneficiary(beneficiary)

    async def update_beneficiary(self, beneficiary_id: str, changes: BeneficiaryUpdate) -> WriteResult:
        current = await self.store.get_beneficiary(beneficiary_id)
        if current is None:
            return WriteResult(success=False, error="Beneficiary not found")
        cleared = [f for f in REQUIRED_BENEFICIARY_FIELDS if f in changes.model_fields_set and getattr(changes, f) is None]
        if cleared:
            raise ValidationFailure(f"Cannot clear required field(s): {', '.join(cleared)}.")
        if changes.date_of_birth and changes.date_of_birth > self.today:
            raise ValidationFailure("Date of birth cannot be in the future.")
        if "district_id" in changes.model_fields_set or "block_id" in changes.model_fields_set:
            district_id = changes.district_id or current.district_id
            block_id = changes.block_id if "block_id" in changes.model_fields_set else current.block_id
            await self._check_location(district_id, block_id)
        return await self.store.update_beneficiary(beneficiary_id, changes)

    async def delete_beneficiary(self, beneficiary_id: str) -> WriteResult:
        linked = await self.store.count_vaccinations(VaccinationQuery(beneficiary_id=beneficiary_id))
        if linked > 0:
            logger.warning(
                "Refusing to delete beneficiary %s: %d vaccination record(s) reference it",
                beneficiary_id, linked,
            )
            raise IntegrityViolation("Cannot delete beneficiary with vaccination records.")
        return await self.store.delete_beneficiary(beneficiary_id)

    async def add_vaccination(self, vaccination: VaccinationCreate) -> WriteResult:
        if vaccination.date_given > self.today:
            raise ValidationFailure("Vaccination date cannot be in the future.")
        vaccine_type = await self.store.get_vaccine_type(vaccination.vaccine_type_id)
        if vaccine_type is None:
            raise ValidationFailure(f"Unknown vaccine type '{vaccination.vaccine_type_id}'.")
        if vaccination.dose_number > vaccine_type.total_doses:
            raise ValidationFailure(
                f"{vaccine_type.name} has {vaccine_type.total_doses} dose(s); "
                f"dose {vaccination.dose_number} is not part of the series."
            )
        if await self.store.get_beneficiary(vaccination.beneficiary_id) is None:
            raise ValidationFailure(f"Unknown beneficiary '{vaccination.beneficiary_id}'.")
        await self._check_location(vaccination.district_id, vaccination.block_id)
        return await self.store.insert_vaccination(vaccination)

    async def delete_vaccination(self, vaccination_id: str) -> WriteResult:
        # vaccinations are leaf records; nothing references them
        return await self.store.delete_vaccination(vaccination_id)
