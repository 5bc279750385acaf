"""LLM prompt templates for pipeline stages and guardrails."""

from langchain_core.prompts import PromptTemplate

# Common instruction to suppress prose and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} for LangChain templates
JSON_ONLY_INSTRUCTION = """
IMPORTANT: Return ONLY the JSON. Do not wrap it in markdown code blocks.
Do not add any text before or after the JSON."""

# Prompting technique labels (audit metadata only)
TECHNIQUE_CHAIN_OF_THOUGHT = "Chain-of-Thought"
TECHNIQUE_FEW_SHOT = "Few-Shot Prompting"
TECHNIQUE_ZERO_SHOT_COT = "Zero-Shot Chain-of-Thought"
TECHNIQUE_HEURISTIC = "Heuristic Prompting"
TECHNIQUE_SAFETY = "Safety & Compliance Checks"

SPEAKER_IDENTIFICATION_PROMPT = PromptTemplate.from_template(
    """You are a medical transcription expert. Analyze this medical consultation transcript and identify the speakers.

TRANSCRIPT:
{transcript}

Let's work through this step-by-step:

1. First, scan for explicit speaker labels (e.g., "Doctor:", "Patient:", "Nurse:")
2. Then, analyze speech patterns to identify roles:
   - Medical terminology and diagnostic language suggests healthcare provider
   - Personal symptoms and concerns suggest patient
   - Administrative or supportive language suggests nurse/staff

Based on this analysis, return ONLY a valid JSON object:
{{
  "speakers": {{
    "doctor": "Name or 'Doctor' if not specified",
    "patient": "Name or 'Patient' if not specified",
    "others": ["List of other speakers if any"]
  }},
  "confidence": "high/medium/low",
  "annotatedTranscript": "The transcript with clear [Doctor] and [Patient] labels"
}}
""" + JSON_ONLY_INSTRUCTION
)

SOAP_NOTE_PROMPT = PromptTemplate.from_template(
    """Convert this medical transcript into a SOAP note. Use these examples as guidance:

EXAMPLE 1:
Input: "Patient complains of headache for 3 days. No fever. BP 120/80."
Output:
{{
  "subjective": "Patient reports headache for 3 days duration",
  "objective": "Vital signs: BP 120/80. No fever present",
  "assessment": "Primary headache, likely tension-type",
  "plan": "Symptomatic treatment with analgesics, follow-up if symptoms persist"
}}

EXAMPLE 2:
Input: "Patient has cough and fever. Temperature 101F. Lungs clear."
Output:
{{
  "subjective": "Patient presents with cough and fever",
  "objective": "Temperature: 101F. Lung auscultation: clear bilateral",
  "assessment": "Upper respiratory infection",
  "plan": "Supportive care, antipyretics, return if symptoms worsen"
}}

NOW CONVERT THIS TRANSCRIPT:
{transcript}

Return ONLY a valid JSON object with subjective, objective, assessment, and plan fields.
""" + JSON_ONLY_INSTRUCTION
)

PROBLEM_EXTRACTION_PROMPT = PromptTemplate.from_template(
    """You are a clinical documentation specialist. Extract all medical problems from this SOAP note.

SOAP NOTE:
{note_json}

INSTRUCTIONS:
1. Extract ONLY the actual medical problems/diagnoses
2. Be specific and use proper medical terminology
3. Include both primary diagnoses and secondary conditions
4. Include symptoms that represent distinct clinical problems
5. DO NOT include normal findings or non-problems

Analyze each section systematically:
From SUBJECTIVE: Identify chief complaints and reported symptoms
From OBJECTIVE: Identify abnormal findings and positive test results
From ASSESSMENT: Extract diagnosed conditions
From PLAN: Identify any problems being treated

Return ONLY a valid JSON array:
[
  {{
    "description": "[Specific medical problem/diagnosis]",
    "rationale": "[Clinical evidence from SOAP note]",
    "source": "[Section: Subjective/Objective/Assessment/Plan]"
  }}
]

EXAMPLE OUTPUT:
[
  {{
    "description": "Community-acquired pneumonia",
    "rationale": "Cough with yellowish sputum, fever, crackles in lower right lung",
    "source": "Subjective, Objective, Assessment"
  }},
  {{
    "description": "Hypertension, uncontrolled",
    "rationale": "BP reading 150/95, patient reports not taking medications regularly",
    "source": "Objective, Subjective"
  }}
]
""" + JSON_ONLY_INSTRUCTION
)

DIAGNOSIS_CODING_PROMPT = PromptTemplate.from_template(
    """You are an expert medical coder. Assign accurate ICD-10-CM codes to these diagnoses.

MEDICAL PROBLEMS TO CODE:
{problems_json}

CODING INSTRUCTIONS:
1. Use the most specific ICD-10-CM code available
2. Follow proper code format (Letter + 2 digits, optional decimal and up to 4 more digits)
3. Common codes for reference:
   - J06.9: Acute upper respiratory infection, unspecified
   - J18.9: Pneumonia, unspecified organism
   - J20.9: Acute bronchitis, unspecified
   - I10: Essential (primary) hypertension
   - E11.9: Type 2 diabetes mellitus without complications
   - R05.9: Cough, unspecified
   - R50.9: Fever, unspecified
   - R51.9: Headache, unspecified
   - M79.1: Myalgia
   - K21.9: Gastro-esophageal reflux disease without esophagitis
   - F41.9: Anxiety disorder, unspecified
   - F32.9: Major depressive disorder, single episode, unspecified
4. Code at most {max_codes} problems, most clinically significant first
5. Rate your confidence based on specificity match

Return ONLY a valid JSON array:
[
  {{
    "problem": "[exact problem text from input]",
    "code": "[ICD-10-CM code]",
    "description": "[Official ICD-10-CM description]",
    "confidence": "high" or "medium" or "low"
  }}
]
""" + JSON_ONLY_INSTRUCTION
)

BILLING_CODING_PROMPT = PromptTemplate.from_template(
    """Based on this encounter, suggest appropriate CPT codes for billing.

SOAP NOTE:
{note_json}

PROBLEMS ADDRESSED:
{problems_json}

Step 1 - Visit type:
- New patient (99202-99205) or established patient (99211-99215)?

Step 2 - Medical decision making / time:
- Straightforward: 99212 / 99202
- Low: 99213 / 99203
- Moderate: 99214 / 99204
- High: 99215 / 99205

Step 3 - Additional services (at most {max_items}):
- Procedures, point-of-care tests, counseling performed during the visit

Respond with ONLY a valid JSON object:
{{
  "consultationLevel": {{
    "code": "5-digit CPT office visit code",
    "description": "Visit level description",
    "duration": "Estimated visit duration",
    "justification": "Based on complexity and time",
    "confidence": "high/medium/low"
  }},
  "additionalItems": [
    {{
      "code": "5-digit CPT code",
      "description": "Service description",
      "justification": "Why this code applies",
      "confidence": "high/medium/low"
    }}
  ],
  "billingHint": "Additional billing considerations or restrictions"
}}
""" + JSON_ONLY_INSTRUCTION
)

EMERGENCY_DETECTION_PROMPT = PromptTemplate.from_template(
    """You are a medical safety reviewer. Analyze this transcript for emergency indicators.

Transcript: "{transcript}"

Check for these HIGH-PRIORITY emergency conditions:
1. Cardiovascular: chest pain, chest pressure, heart attack symptoms, shortness of breath
2. Neurological: stroke symptoms, seizures, loss of consciousness, severe headache with neurological symptoms
3. Mental health: suicidal thoughts, self-harm intentions, homicidal ideation
4. Respiratory: difficulty breathing, choking, severe asthma attack
5. Allergic: anaphylaxis, severe allergic reaction, swelling of throat/face
6. Trauma: severe bleeding, major injuries, head trauma with confusion
7. Poisoning/Overdose: drug overdose, poisoning symptoms

Look for both explicit mentions AND implied symptoms. For example:
- "pressure in my chest" = chest pain emergency
- "can't catch my breath" = breathing emergency
- "want to end it all" = suicidal emergency

Return ONLY this JSON format:
{{
  "hasEmergency": true/false,
  "detectedConditions": ["list", "of", "conditions"],
  "severity": "low" or "medium" or "high" or "critical",
  "recommendation": "one sentence recommendation"
}}

If ANY emergency indicator is present, set hasEmergency to true.
""" + JSON_ONLY_INSTRUCTION
)
