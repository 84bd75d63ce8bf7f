"""Column names and defaults for the palmerpenguins layout."""

RESPONSE = "species"
SPECIES = ("Adelie", "Chinstrap", "Gentoo")

NUMERIC_COLUMNS = (
    "bill_length_mm",
    "bill_depth_mm",
    "flipper_length_mm",
    "body_mass_g",
)
CATEGORICAL_COLUMNS = ("island", "sex", "year")
ALL_COLUMNS = (RESPONSE, "island", *NUMERIC_COLUMNS, "sex", "year")

OTHER_LABEL = "other"
INTERCEPT = "(Intercept)"

DEFAULT_SEED = 42
DEFAULT_TRAIN_FRACTION = 0.8
DEFAULT_FOLDS = 10

# Same defaults as R's glm.control.
DEFAULT_MAX_ITER = 25
DEFAULT_TOL = 1e-8
