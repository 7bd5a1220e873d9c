"""LLM prompt templates for the opportunity graph query pipeline."""

REASONING_PROMPT = """You are analysing a question about a Neo4j graph of industries, sectors, departments, pain points and AI project opportunities.

GRAPH SCHEMA:
{schema}

UI CONTEXT:
{context}

CONVERSATION SO FAR (oldest first):
{history}

USER QUESTION:
{question}

Tasks:
1. List 1-3 plausible interpretations of the question.
2. Choose the most likely one.
3. If the question is too ambiguous to answer even with exploration, ask ONE clarifying question with 2-4 short options.
4. Propose up to 5 cheap exploration queries that check whether names in the question exist in the graph.
   For a term that could be an industry, a sector or a department, propose one query per type.
   Exploration queries must be read-only, must use $parameters for names, and must end with LIMIT 10.
   Example: MATCH (s:Sector) WHERE toLower(s.name) CONTAINS toLower($term) RETURN s.name AS name LIMIT 10

Respond with a JSON object in this exact format:
{{
    "interpretations": ["string"],
    "chosen_interpretation": "string",
    "needs_clarification": false,
    "clarification": {{"question": "string", "options": ["string"]}},
    "exploration_queries": [
        {{"query": "MATCH ... RETURN ... LIMIT 10", "purpose": "string", "params": {{"term": "string"}}}}
    ]
}}

Respond ONLY with the JSON object, no additional text."""


SYNTHESIS_PROMPT = """Generate ONE Cypher query for Neo4j that answers the user's question.

GRAPH SCHEMA:
{schema}

USER QUESTION:
{question}

CHOSEN INTERPRETATION:
{interpretation}

EXPLORATION RESULTS (what actually exists in the graph):
{explorations}

CONVERSATION SO FAR (oldest first):
{history}

Rules:
- Use ONLY the node labels and relationship types listed in the schema. Never invent new labels, relationship types or properties.
- Prefer the exact names found during exploration over the user's wording (e.g. use "Retail Banking" if that is what exists).
- The graph view needs nodes AND relationships: bind relationship variables and return them.
  CORRECT: MATCH (i:Industry)-[r:HAS_SECTOR]->(s:Sector) RETURN i, r, s
  CORRECT: MATCH path = (i:Industry)-[:HAS_SECTOR]->(s:Sector) RETURN path
  WRONG:   RETURN (i)-[:HAS_SECTOR]->(s)
  WRONG:   RETURN i, relationships(i)
- Never mix * with named items in RETURN.
- Read-only: no CREATE, MERGE, SET, DELETE or REMOVE.
- Always end with LIMIT (at most 100).

Respond with a JSON object in this exact format:
{{
    "query": "MATCH ... RETURN ... LIMIT 50",
    "params": {{}},
    "explanation": "one or two sentences describing what the query shows"
}}

Respond ONLY with the JSON object, no additional text."""


MUTATION_PROMPT = """Generate ONE Cypher statement that performs the requested change to a Neo4j graph.

GRAPH SCHEMA:
{schema}

UI CONTEXT:
{context}

CONVERSATION SO FAR (oldest first):
{history}

REQUESTED CHANGE:
{request}

Rules:
- Use ONLY the node labels and relationship types listed in the schema.
- New nodes must carry every required property of their label.
- Identify existing nodes by name (or title) with $parameters; never match unfiltered labels when updating.
- Prefer MERGE over CREATE for relationships between existing nodes.
- The statement will be reviewed by a person before it runs.

Respond with a JSON object in this exact format:
{{
    "query": "MATCH ... MERGE ... RETURN ...",
    "params": {{}},
    "explanation": "what will change, in plain words"
}}

Respond ONLY with the JSON object, no additional text."""
