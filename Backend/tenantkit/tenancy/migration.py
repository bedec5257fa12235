"""
Migration safety check between two validated configs of one tenant.

Pure comparison: reports edits that could invalidate bookings made under
the old config. It never remediates; the caller decides whether to block.
"""

from dataclasses import dataclass, field

from .schema import TenantConfig


@dataclass(frozen=True)
class MigrationReport:
    safe: bool
    breaking_changes: list[str] = field(default_factory=list)


def check_migration(old_config: TenantConfig, new_config: TenantConfig) -> MigrationReport:
    breaking: list[str] = []

    if old_config.business.id != new_config.business.id:
        breaking.append(
            f"Business ID changed ({old_config.business.id} -> {new_config.business.id}) "
            "- this will break subdomain routing"
        )

    if old_config.business.timezone != new_config.business.timezone:
        breaking.append(
            f"Timezone changed ({old_config.business.timezone} -> {new_config.business.timezone}) "
            "- existing appointments may show incorrect times"
        )

    old_services = old_config.service_map()
    new_services = new_config.service_map()

    for service_id, old_service in old_services.items():
        new_service = new_services.get(service_id)
        if new_service is None:
            breaking.append(f"Service removed: {service_id} - existing bookings may break")
        elif new_service.duration != old_service.duration:
            breaking.append(
                f"Service duration changed: {service_id} "
                f"({old_service.duration}min -> {new_service.duration}min)"
            )

    return MigrationReport(safe=not breaking, breaking_changes=breaking)
