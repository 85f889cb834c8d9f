"""Prompt templates for the AI flows. Literal braces are doubled for str.format."""

GENERATE_PRESET_PROMPT = """You are an expert at generating table presets based on user descriptions.

Given the following description of the desired table structure and export format, generate a table preset.

Description: {description}

The table preset must be a string that conforms to the following format:

[TABLE(EXPORT-AS:<file_extension>)(WRITE-AS:<template_string>):[
 {{"name":"Column Name 1", "value":"column1", "type":"text", "important":"no", "write":"ID1"}},
 {{"name":"Column Name 2", "value":"column2", "type":"number", "important":"yes", "write":"ID2"}}
]]

Replace <file_extension> with the appropriate file extension (e.g. .jsonl, .json, .csv, .txt).
Replace <template_string> with the template used to export each row.
The part after the colon MUST be a valid JSON array, enclosed in square brackets [].
Each column definition is a JSON object with "name", "value", "type", "important" and "write".
The "write" field must be a token that appears in <template_string>.
"type" is one of text, number, boolean or json. Use boolean for a checkbox.
"important" is yes when the column is required to export the record, otherwise no.

Respond with a JSON object of the form {{"preset": "<the preset string>"}} and nothing else.
"""

CONVERT_FILE_PROMPT = """You are an expert data conversion engine. Transform unstructured or semi-structured text data into a well-structured format based on the user's instructions.

File Content:
```
{file_content}
```

User Instructions:
```
{user_prompt}
```

- Determine the correct file extension for the output from the instructions (e.g. .jsonl, .csv, .md).
- Create a suitable filename with that extension.
- Transform the raw data into the structured format requested.

Respond with a JSON object with exactly two keys: "convertedContent" (the full text of the converted file) and "fileName". Do not include any commentary.
"""

POPULATE_COLUMNS_PROMPT = """You are an intelligent data completion assistant. Populate empty or null values in specific columns of a dataset based on the user's instructions.

For each object in the table data, check the columns listed under "Columns to Populate". If the value is missing, null or an empty string, generate a value based on the user prompt and the other columns of the same object.
Do not modify existing data. Do not add or remove rows. Keep every "__id" unchanged.

Table Structure (Preset):
```
{preset_string}
```

User Prompt:
```
{user_prompt}
```

Columns to Populate:
{columns}

Current Table Data:
```json
{table_data}
```

Respond with a JSON object {{"updatedData": [...]}} containing the entire updated dataset.
"""
