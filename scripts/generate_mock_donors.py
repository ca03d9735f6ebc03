import pandas as pd
import numpy as np
from datetime import datetime, timezone, timedelta

# Rough ABO/Rh distribution for the donor pool
BLOOD_TYPE_SHARES = {
    "O+": 0.40,
    "A+": 0.25,
    "B+": 0.17,
    "AB+": 0.05,
    "O-": 0.05,
    "A-": 0.04,
    "B-": 0.03,
    "AB-": 0.01,
}


def generate_mock_donors(num_donors=500, output_file="mock_donors.csv", seed=None):
    """
    Generates a donor pool scattered around Harare for dispatch simulations.
    Roughly 10% share no coordinates, so ranking has to fall back to its
    default distance for them.
    """
    rng = np.random.default_rng(seed)

    # Center around Harare, Zimbabwe
    CENTER_LAT = -17.824858
    CENTER_LON = 31.053028

    now = datetime.now(timezone.utc)
    types = list(BLOOD_TYPE_SHARES)
    shares = list(BLOOD_TYPE_SHARES.values())

    data = []
    for donor_index in range(num_donors):
        # Spread over ~30km (roughly 0.3 degrees) so every search ring gets used
        has_location = rng.random() > 0.1
        lat = CENTER_LAT + rng.uniform(-0.15, 0.15) if has_location else None
        lon = CENTER_LON + rng.uniform(-0.15, 0.15) if has_location else None

        # A third never donated, the rest donated in the last ~4 months
        last_donation_at = None
        if rng.random() > 0.33:
            last_donation_at = (now - timedelta(days=int(rng.integers(1, 120)))).isoformat()

        data.append({
            "donor_id": f"DNR-{str(donor_index + 1).zfill(4)}",
            "name": f"Donor {donor_index + 1}",
            "phone": f"+26377{rng.integers(1000000, 9999999)}",
            "blood_type": rng.choice(types, p=shares),
            "lat": np.round(lat, 6) if lat is not None else None,
            "lon": np.round(lon, 6) if lon is not None else None,
            "available": bool(rng.random() < 0.85),
            "notifications_opt_in": bool(rng.random() < 0.9),
            "last_donation_at": last_donation_at,
        })

    # Save to CSV
    df = pd.DataFrame(data)
    df.to_csv(output_file, index=False)
    print(f"Generated {num_donors} donors and saved to '{output_file}'")

    print("\nDonors per blood type:")
    for blood_type, count in df["blood_type"].value_counts().items():
        print(f"  {blood_type}: {count}")

    return df


if __name__ == "__main__":
    generate_mock_donors()
