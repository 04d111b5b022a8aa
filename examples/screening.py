"""OrbitOps Screening: find a conjunction, grade it and plan an avoidance burn.

Two synthetic circular orbits are set up to cross at a common epoch. The
engine screens them in the background, grades the event, and the
optimizer finds the smallest burn that opens the miss distance to 2 km.
"""

import logging
import math

from orbitops import (
    ConjunctionEngine,
    EngineSettings,
    OrbitalElements,
    PropagationMode,
    SpacecraftParams,
)

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

EPOCH = 1_700_000_000.0
common = dict(epoch=EPOCH, inclination_deg=45.0, eccentricity=1e-6, arg_perigee_deg=0.0,
              mean_motion_rev_per_day=15.5)
catalog = [
    OrbitalElements.from_keplerian(norad_id=90001, name="OPS-SAT", raan_deg=0.0,
                                   mean_anomaly_deg=math.degrees(math.acos(-1.0 / math.sqrt(3.0))), **common),
    OrbitalElements.from_keplerian(norad_id=90002, name="FENGYUN 1C DEB", raan_deg=90.0,
                                   mean_anomaly_deg=math.degrees(math.acos(1.0 / math.sqrt(3.0))), **common),
]

settings = EngineSettings(propagation_mode=PropagationMode.ANALYTIC)

with ConjunctionEngine(settings, catalog) as engine:
    report = engine.submit_scan(EPOCH - 3600.0, EPOCH + 3600.0).result(timeout=60)
    print(f"Screened {report.pairs_screened} pair(s), {len(report.events)} event(s)")
    for e in report.events:
        print(f"{e.tca_datetime:%Y-%m-%d %H:%M:%S} | {e.primary_name} vs {e.secondary_name} | "
              f"{e.miss_distance_km:.3f} km | {e.relative_velocity_km_s:.2f} km/s | "
              f"Pc={e.collision_probability:.2e} [{e.risk_tier.value}]")

    if report.events:
        event = report.events[0]
        handle = engine.submit_optimization(
            90001, 90002, 2.0, time_to_tca_s=event.tca - (EPOCH - 2700.0),
            spacecraft=SpacecraftParams(mass_kg=500.0, fuel_mass_kg=10.0, isp_s=220.0),
            event=event, now=EPOCH - 2700.0,
        )
        plan = handle.result(timeout=120)
        print(plan.message)
        if plan.success:
            r, i, c = plan.delta_v_ric_km_s
            print(f"Burn (R, I, C): ({r * 1e3:.3f}, {i * 1e3:.3f}, {c * 1e3:.3f}) m/s, "
                  f"fuel {plan.fuel_cost_kg:.3f} kg, new miss {plan.new_miss_distance_km:.2f} km")
        for alt in plan.alternatives:
            print(f"  alternative: {alt.description} ({alt.total_delta_v_km_s * 1e3:.3f} m/s)")
