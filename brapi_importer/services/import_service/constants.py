"""Column names and messages shared by the import workflows."""

# Germplasm import columns
GERMPLASM_NAME = "Germplasm Name"
BREEDING_METHOD = "Breeding Method"
SOURCE = "Source"
EXTERNAL_UID = "External UID"
ENTRY_NO = "Entry No"
FEMALE_PARENT_GID = "Female Parent GID"
MALE_PARENT_GID = "Male Parent GID"
FEMALE_PARENT_ENTRY_NO = "Female Parent Entry No"
MALE_PARENT_ENTRY_NO = "Male Parent Entry No"
GID = "GID"
SYNONYMS = "Synonyms"

# Germplasm user inputs
LIST_NAME = "List Name"
LIST_DESCRIPTION = "List Description"

# Experiment import columns
GERMPLASM_GID = "Germplasm GID"
TEST_CHECK = "Test (T) or Check (C)"
EXP_TITLE = "Exp Title"
EXP_DESCRIPTION = "Exp Description"
EXP_UNIT = "Exp Unit"
EXP_TYPE = "Exp Type"
ENV = "Env"
ENV_LOCATION = "Env Location"
ENV_YEAR = "Env Year"
EXP_UNIT_ID = "Exp Unit ID"
REP_NUM = "Exp Replicate #"
BLOCK_NUM = "Exp Block #"
ROW = "Row"
COLUMN = "Column"
TREATMENT_FACTORS = "Treatment Factors"
OBS_UNIT_ID = "ObsUnitID"

TIMESTAMP_PREFIX = "TS:"

# Sample submission columns
PLATE_ID = "PlateID"
ORGANISM = "Organism"
SPECIES = "Species"
TISSUE = "Tissue"
COMMENT = "Comment"
WELL = "Row/Column"

# Sample submission user inputs
SUBMISSION_NAME = "Submission Name"

# Values meaning "parent unknown"
UNKNOWN_PARENT = "0"

# Observation value accepted for every trait
NA_VALUE = "NA"

TEST_CHECK_VALUES = {"T": "test", "TEST": "test", "C": "check", "CHECK": "check"}

PLATE_ROWS = "ABCDEFGH"
PLATE_COLUMNS = range(1, 13)

# Mapper messages
MISSING_COLUMN_MSG = 'Column name "%s" does not exist in file'
WRONG_DATA_TYPE_MSG = 'Column name "%s" must be %s type, but non-%s type provided.'
MISSING_USER_INPUT_MSG = 'User input, "%s" is required'
EMPTY_FILE_MSG = "Import file contains no data rows"

# Germplasm messages
MISSING_GIDS_MSG = "The following GIDs were not found in the database: %s."
MISSING_PARENTAL_GIDS_MSG = "The following parental GIDs were not found in the database: %s."
MISSING_PARENTAL_ENTRY_NO_MSG = (
    "The following parental entry numbers were not found in the database: %s."
)
MISSING_ENTRY_NUMBERS_MSG = "Either all or none of the germplasm must have entry numbers."
DUPLICATE_ENTRY_NO_MSG = "Entry numbers must be unique. Duplicated entry numbers found: %s"
CIRCULAR_DEPENDENCY_MSG = "Circular dependency in the pedigree tree"
LIST_NAME_EXISTS_MSG = "Import group name already exists"
PEDIGREE_EXISTS_MSG = "Pedigree information cannot be overwritten"
MISSING_FEMALE_PARENT_MSG = (
    "Female parent is missing.  If the female parent is unknown, "
    "specify GID or entry number 0 as the female parent"
)
BLANK_GERMPLASM_FIELD_MSG = "Field is blank when creating new germplasm"

# Experiment messages
EXPERIMENT_TITLE_EXISTS_MSG = "Experiment Title already exists"
MULTIPLE_EXP_TITLES_MSG = "File contains more than one Experiment Title"
EXPERIMENT_NOT_FOUND_MSG = "Referenced experiment not found"
ENVIRONMENT_NOT_FOUND_MSG = "Referenced environment not found in experiment"
OBS_UNIT_NOT_FOUND_MSG = "Referenced observation unit not found in environment"
BLANK_FIELD_EXPERIMENT_MSG = "Field is blank when creating a new experiment"
BLANK_FIELD_OBS_MSG = "Field is blank when adding observations to an existing experiment"
ENV_LOCATION_MISMATCH_MSG = "All locations must be the same for a given environment"
ENV_YEAR_MISMATCH_MSG = "All years must be the same for a given environment"
UNIT_ID_NOT_UNIQUE_MSG = "The ID (%s) is not unique within the environment(%s)"
MISSING_GERMPLASM_GID_MSG = "A non-existing GID"
INVALID_TEST_CHECK_MSG = "Invalid value (%s)"
OBS_UNIT_ID_ON_NEW_MSG = "ObsUnitID cannot be specified when creating a new environment"
UNKNOWN_OBS_UNIT_ID_MSG = "Could not find observation unit by ObsUnitID"
OBSERVATION_EXISTS_MSG = "Value already exists for ObsUnitId: %s, Phenotype: %s"
MISSING_TRAITS_MSG = "Ontology term(s) not found: %s"

# Observation value messages
NON_NUMERIC_MSG = "Non-numeric text detected detected"
OUT_OF_RANGE_MSG = "Value outside of min/max range detected"
BAD_DATE_MSG = "Incorrect date format detected. Expected YYYY-MM-DD"
BAD_TIMESTAMP_MSG = (
    "Incorrect datetime format detected. Expected YYYY-MM-DD or YYYY-MM-DDThh:mm:ss+hh:mm"
)
UNDEFINED_ORDINAL_MSG = "Undefined ordinal category detected"
UNDEFINED_NOMINAL_MSG = "Undefined nominal category detected"

# Sample submission messages
MISSING_REQUIRED_DATA_MSG = "Missing required data"
GID_OR_OBS_UNIT_REQUIRED_MSG = "One of GID or ObsUnitID is required"
UNKNOWN_OBS_UNIT_MSG = "Unknown ObsUnitID"
UNKNOWN_GERMPLASM_GID_MSG = "Unknown germplasm GID"
BAD_PLATE_COLUMN_MSG = "Column must be a number between 1 and 12"
BAD_PLATE_ROW_MSG = "Row must be a letter between A and H"
WELL_COLLISION_MSG = "The sample in row %d shares plate %s, row: %s, column: %d with row(s): %s"
WELL_OCCUPIED_MSG = "Plate %s already holds a different sample at row: %s, column: %d"


def format_values(values) -> str:
    """Render identifiers for an aggregated message: unique, sorted, comma separated."""
    unique = {str(v) for v in values}
    return ", ".join(sorted(unique, key=_natural_key))


def _natural_key(value: str) -> tuple:
    # Sort numeric identifiers numerically so "10" follows "9"
    return (0, int(value), value) if value.isdigit() else (1, 0, value)
