"""OrbitOps Quickstart: parse a TLE, propagate it and inspect the state."""

from orbitops import PropagationMode, parse_tle, propagate

# ISS (ZARYA) TLE
tle_text = """
ISS (ZARYA)
1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9993
2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439596
""".strip()

iss = parse_tle(tle_text)[0]

print(f"Satellite: {iss.name}")
print(f"NORAD ID:  {iss.norad_id}")
print(f"Epoch:     {iss.epoch_datetime:%Y-%m-%d %H:%M:%S} UTC")
print(f"Incl:      {iss.inclination_deg:.4f}°")
print(f"Ecc:       {iss.eccentricity:.7f}")
print(f"Period:    {iss.period_s / 60:.1f} min")

# One orbit later, with SGP4 and with the two-body propagator
t = iss.epoch + iss.period_s
for mode in PropagationMode:
    state = propagate(iss, t, mode)
    x, y, z = state.position_km
    print(f"{mode.value:>8}: r = ({x:9.2f}, {y:9.2f}, {z:9.2f}) km  |r| = {state.radius_km:.2f} km")
