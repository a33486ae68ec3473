"""
Module catalog and prompt builders for city onboarding.

The six topic modules are a closed table. Each entry carries its own domain
framing for hotspot and quick-win generation; the builders below only
interpolate city details into that framing. No I/O happens here.

Adding or removing a module is a single edit to MODULE_CATALOG. Catalog order
is the order the orchestrator processes modules in.
"""

from __future__ import annotations

from dataclasses import dataclass

from services.climate_api.onboarding.types import Coordinates, TemperatureUnit


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str


@dataclass(frozen=True)
class ModuleSpec:
    """One catalog entry. `slug` must match a row in the modules table."""

    slug: str
    name: str
    description: str
    category: str  # pollution | climate | ecosystem
    hotspot_system_prompt: str
    quick_win_system_prompt: str
    hotspot_context: tuple[str, ...]
    quick_win_context: tuple[str, ...]

    @property
    def label(self) -> str:
        return self.name.lower()


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

URBAN_HEAT = ModuleSpec(
    slug="urban-heat",
    name="Urban Heat",
    description="Heat islands, tree equity and surface cooling opportunities.",
    category="climate",
    hotspot_system_prompt="""You are an expert on urban heat islands and tree equity. Generate realistic hotspot data for cities.
For each hotspot, include:
- A specific neighborhood or district name (use real names for the city)
- Temperature anomaly above baseline
- Surface type (asphalt, concrete, industrial, parking)
- Nearby landmarks or cross-streets
- Tree canopy coverage percentage (typically 5-40%)

Generate data that reflects real urban heat patterns:
- Industrial areas and parking lots are hottest
- Areas near water or parks are cooler
- Downtown centers often have heat islands
- Low-income neighborhoods often have less tree cover""",
    quick_win_system_prompt="""Suggest practical quick wins to reduce urban heat:
- Tree planting locations
- Cool roof installations
- Shade structure placement
- Parking lot greening
- Community cooling centers

Each quick win should be achievable in 1-6 months with low to medium budget.""",
    hotspot_context=(
        "Focus on heat islands, lack of tree cover, industrial zones",
        "Use {unit_symbol} for temperature differences",
        "Typical range: {heat_range} above baseline",
    ),
    quick_win_context=(
        "Focus on tree planting, cool roofs, shade structures, parking lot greening",
        "Prioritize low-income and underserved neighborhoods",
        "Consider existing green spaces that can be enhanced",
    ),
)

COASTAL_PLASTIC = ModuleSpec(
    slug="coastal-plastic",
    name="Coastal Plastic",
    description="Beach, harbor and river-mouth plastic accumulation.",
    category="pollution",
    hotspot_system_prompt="""You are an expert on coastal plastic pollution and marine debris. Generate realistic hotspot data.
For each hotspot, include:
- Specific beach, harbor, or waterway name (use real names)
- Estimated plastic accumulation rate (kg/week)
- Primary plastic types (bottles, bags, microplastics, fishing gear)
- Source indicators (river outflow, maritime, local dumping)
- Tidal patterns affecting accumulation

Generate data reflecting real coastal plastic patterns:
- River mouths and estuaries accumulate more debris
- Popular beaches have more consumer waste
- Harbors have more industrial and fishing-related plastic
- Currents and wind affect where plastic accumulates""",
    quick_win_system_prompt="""Suggest practical quick wins to address coastal plastic:
- Beach cleanup organization points
- Trash trap installation locations
- Public awareness campaign areas
- Waste bin placement optimization
- Fishing net collection programs

Each quick win should be achievable in 1-6 months with measurable impact.""",
    hotspot_context=(
        "Focus on beaches, harbors, river mouths",
        "Measure plastic accumulation in kg/week",
        "Consider tourism, fishing, urban runoff sources",
    ),
    quick_win_context=(
        "Focus on beach cleanups, trash traps, waste bin placement, awareness campaigns",
        "Partner with schools, NGOs, local businesses",
        "Address both visible litter and microplastics",
    ),
)

OCEAN_PLASTIC = ModuleSpec(
    slug="ocean-plastic",
    name="Ocean Plastic",
    description="Offshore debris classification and citizen-science tracking.",
    category="pollution",
    hotspot_system_prompt="""You are an expert on ocean plastic classification and tracking. Generate realistic debris monitoring data.
For each hotspot, include:
- Coastal area or offshore zone name
- Debris density (items per km²)
- Composition breakdown (percentage by type)
- Movement patterns (where debris is heading)
- Seasonal variation notes

Focus on classifiable debris that citizen science can track.""",
    quick_win_system_prompt="""Suggest citizen science and classification quick wins:
- Monitoring station locations
- App-based reporting zones
- School partnership opportunities
- Volunteer coordination points
- Data collection protocols""",
    hotspot_context=(
        "Focus on offshore areas, current patterns",
        "Measure debris density in items/km²",
        "Track movement patterns and sources",
    ),
    quick_win_context=(
        "Focus on monitoring stations, citizen science, data collection",
        "Partner with research institutions and volunteers",
        "Establish tracking and classification protocols",
    ),
)

PORT_EMISSIONS = ModuleSpec(
    slug="port-emissions",
    name="Port Emissions",
    description="Berth, terminal and anchorage air emissions.",
    category="pollution",
    hotspot_system_prompt="""You are an expert on maritime emissions and port air quality. Generate realistic emissions data.
For each hotspot, include:
- Specific berth, terminal, or anchorage name
- Estimated daily emissions (tons CO2, NOx, SOx, PM2.5)
- Vessel types typically present (container, tanker, cruise, bulk)
- Peak emission times
- Wind patterns affecting dispersion

Generate data reflecting real port emission patterns:
- Anchorages have ships idling for extended periods
- Container terminals have crane and truck emissions
- Cruise terminals have peak loads during embarkation
- Tanker berths have vapor emissions""",
    quick_win_system_prompt="""Suggest practical quick wins to reduce port emissions:
- Shore power connection priorities
- Vessel speed reduction zones
- Electric equipment upgrades
- Monitoring station placements
- Green shipping lane designations

Focus on actions achievable within 6 months.""",
    hotspot_context=(
        "Focus on terminals, berths, anchorages",
        "Measure emissions in tons CO₂/day",
        "Consider vessel types and idling patterns",
    ),
    quick_win_context=(
        "Focus on shore power, speed reduction zones, electric equipment",
        "Work with port authority and shipping companies",
        "Prioritize high-traffic berths and terminals",
    ),
)

BIODIVERSITY = ModuleSpec(
    slug="biodiversity",
    name="Biodiversity",
    description="Urban habitat, pollinator corridors and species opportunities.",
    category="ecosystem",
    hotspot_system_prompt="""You are an expert on urban biodiversity and ecological corridors. Generate realistic biodiversity opportunity data.
For each hotspot, include:
- Specific park, vacant lot, or green space name
- Current biodiversity score (1-10)
- Key species present or missing
- Connectivity to other green spaces
- Improvement potential

Focus on urban wildlife habitat opportunities:
- Pollinator corridors along streets
- Bird nesting sites on buildings
- Pond and wetland creation spots
- Native plant restoration areas""",
    quick_win_system_prompt="""Suggest biodiversity enhancement quick wins:
- Native plant garden locations
- Bee hotel and bird box placements
- Green roof opportunities
- Wildlife corridor connections
- Invasive species removal priorities

Each action should show results within one growing season.""",
    hotspot_context=(
        "Focus on parks, green spaces, corridors",
        "Use biodiversity score scale (1-10)",
        "Consider habitat connectivity and species",
    ),
    quick_win_context=(
        "Focus on native plants, pollinator corridors, green roofs, wildlife habitats",
        "Connect isolated green spaces",
        "Remove invasive species and add nesting sites",
    ),
)

RESTORATION = ModuleSpec(
    slug="restoration",
    name="Restoration",
    description="Brownfield, wetland and degraded-land recovery sites.",
    category="ecosystem",
    hotspot_system_prompt="""You are an expert on ecological restoration and land recovery. Generate realistic restoration opportunity data.
For each hotspot, include:
- Specific site name (brownfield, degraded park, vacant lot)
- Current condition assessment
- Restoration potential (1-10)
- Estimated restoration cost range
- Timeline for visible improvement

Focus on realistic urban restoration opportunities:
- Brownfield remediation sites
- Degraded wetlands
- Abandoned industrial land
- Neglected urban parks
- Streambank restoration zones""",
    quick_win_system_prompt="""Suggest land restoration quick wins:
- Community garden conversions
- Native meadow seeding areas
- Stream daylighting opportunities
- Soil remediation priorities
- Tree planting zones

Focus on sites where visible improvement is possible within 6 months.""",
    hotspot_context=(
        "Focus on brownfields, degraded areas, vacant lots",
        "Use restoration potential score (1-10)",
        "Consider remediation needs and community impact",
    ),
    quick_win_context=(
        "Focus on community gardens, native meadows, stream restoration",
        "Prioritize sites with high visibility and community engagement",
        "Consider soil remediation where needed",
    ),
)

# Processing order
MODULE_CATALOG: tuple[ModuleSpec, ...] = (
    URBAN_HEAT,
    COASTAL_PLASTIC,
    OCEAN_PLASTIC,
    PORT_EMISSIONS,
    BIODIVERSITY,
    RESTORATION,
)

MODULE_SLUGS: tuple[str, ...] = tuple(m.slug for m in MODULE_CATALOG)


# ---------------------------------------------------------------------------
# Output-shape hints
# ---------------------------------------------------------------------------

HOTSPOT_SHAPE_HINT = (
    'Return a JSON object with a "hotspots" array. Each item has: '
    '"name" (string), "description" (2-3 sentences), "neighborhood" (real district name), '
    '"address" (street or landmark), "latOffset" and "lngOffset" (numbers), '
    '"severity" (one of low, medium, high, critical), '
    '"displayValue" (key metric, e.g. "+5.2°C" or "450 kg/week"), and '
    '"metrics" (array of {"key", "value" (number), "unit", "trend" (up, down or stable)}).'
)

QUICK_WIN_SHAPE_HINT = (
    'Return a JSON object with a "quickWins" array. Each item has: '
    '"title" (action-oriented), "description" (2-3 sentences naming a specific location), '
    '"impact" and "effort" (each one of low, medium, high), '
    '"estimatedDays" (number, 7-180), "co2ReductionTons" (number, annual), '
    '"tags" (array of strings), and "steps" (array of 3-5 strings).'
)


# ---------------------------------------------------------------------------
# Prompt builders
# ---------------------------------------------------------------------------

def _heat_range(unit: TemperatureUnit) -> str:
    if unit is TemperatureUnit.FAHRENHEIT:
        return "+3.6°F to +14.4°F"
    return "+2°C to +8°C"


def _context_block(lines: tuple[str, ...], **values: str) -> str:
    return "\n".join(f"- {line.format(**values)}" for line in lines)


def build_hotspot_prompt(
    module: ModuleSpec,
    city_name: str,
    country: str,
    coordinates: Coordinates,
    population: int,
    unit: TemperatureUnit = TemperatureUnit.CELSIUS,
) -> Prompt:
    """Build the system/user prompt pair for one module's hotspots."""
    context = _context_block(
        module.hotspot_context,
        unit_symbol=unit.symbol,
        heat_range=_heat_range(unit),
    )
    user = f"""Generate 4-6 realistic {module.label} hotspots for {city_name}, {country}.

City info:
- Population: {population:,}
- Coordinates: {coordinates.lat:.4f}, {coordinates.lng:.4f}
- Temperature unit preference: {unit.label}

Module context for {module.name}:
{context}

Use REAL neighborhood names, streets, and landmarks from {city_name}.
Generate realistic severity levels (mix of low, medium, high, with 1-2 critical if appropriate).
Use latOffset and lngOffset between -0.04 and 0.04 to spread hotspots around the city center.

{HOTSPOT_SHAPE_HINT}

Return JSON only."""
    return Prompt(system=module.hotspot_system_prompt, user=user)


def build_quick_win_prompt(module: ModuleSpec, city_name: str, country: str) -> Prompt:
    """Build the system/user prompt pair for one module's quick wins."""
    context = _context_block(module.quick_win_context)
    user = f"""Generate 3-4 practical quick wins for {module.label} improvements in {city_name}, {country}.

Module context for {module.name}:
{context}

Each quick win should:
- Reference specific locations and neighborhoods in {city_name}
- Be achievable in 1-6 months
- Have clear, measurable outcomes
- Include 3-5 implementation steps

Balance the impact/effort matrix (not all high impact).

{QUICK_WIN_SHAPE_HINT}"""
    return Prompt(system=module.quick_win_system_prompt, user=user)
