from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from penguins_logit import Observation, records_to_frame

# (mean, sd) per measurement; islands mimic the real layout where Torgersen only hosts Adelie.
SPECIES_PARAMS = {
    "Adelie": {
        "n": 150,
        "bill_length_mm": (39.0, 6.0),
        "bill_depth_mm": (18.3, 1.5),
        "flipper_length_mm": (190.0, 10.0),
        "body_mass_g": (3700.0, 600.0),
        "islands": ["Biscoe", "Dream", "Torgersen"],
    },
    "Chinstrap": {
        "n": 70,
        "bill_length_mm": (47.0, 6.0),
        "bill_depth_mm": (18.4, 1.5),
        "flipper_length_mm": (196.0, 10.0),
        "body_mass_g": (3730.0, 600.0),
        "islands": ["Dream"],
    },
    "Gentoo": {
        "n": 120,
        "bill_length_mm": (45.0, 6.0),
        "bill_depth_mm": (16.0, 1.5),
        "flipper_length_mm": (205.0, 10.0),
        "body_mass_g": (4500.0, 600.0),
        "islands": ["Biscoe"],
    },
}

MISSING_SEX_ROWS = (3, 40, 160, 200, 300)
MISSING_BILL_ROWS = (10, 250)


def make_records(seed: int = 2024) -> list[Observation]:
    rng = np.random.default_rng(seed)
    records = []
    for species, params in SPECIES_PARAMS.items():
        for _ in range(params["n"]):
            records.append(
                Observation(
                    species=species,
                    island=str(rng.choice(params["islands"])),
                    bill_length_mm=float(rng.normal(*params["bill_length_mm"])),
                    bill_depth_mm=float(rng.normal(*params["bill_depth_mm"])),
                    flipper_length_mm=float(rng.normal(*params["flipper_length_mm"])),
                    body_mass_g=float(rng.normal(*params["body_mass_g"])),
                    sex=str(rng.choice(["female", "male"])),
                    year=int(rng.choice([2007, 2008, 2009])),
                )
            )
    for i in MISSING_SEX_ROWS:
        records[i] = replace(records[i], sex=None)
    for i in MISSING_BILL_ROWS:
        records[i] = replace(records[i], bill_length_mm=None)
    return records


@pytest.fixture
def penguins() -> pd.DataFrame:
    return records_to_frame(make_records())


@pytest.fixture
def clean_penguins(penguins) -> pd.DataFrame:
    return penguins.dropna().copy()
