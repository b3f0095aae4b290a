VACCINE_TYPES = [
    {"id": "bcg", "name": "BCG", "total_doses": 1, "description": "Bacillus Calmette-Guérin"},
    {"id": "opv", "name": "OPV", "total_doses": 5, "description": "Oral Polio Vaccine"},
    {"id": "hepb", "name": "Hepatitis B", "total_doses": 4, "description": "Hepatitis B vaccine"},
    {"id": "dpt", "name": "DPT", "total_doses": 5, "description": "Diphtheria, Pertussis, Tetanus"},
    {"id": "measles", "name": "Measles", "total_doses": 2, "description": "Measles vaccine"},
    {"id": "rota", "name": "Rotavirus", "total_doses": 3, "description": "Rotavirus vaccine"},
]

DISTRICTS = [
    {"id": "jaipur", "name": "Jaipur", "state": "Rajasthan", "target_population": 15000},
    {"id": "jodhpur", "name": "Jodhpur", "state": "Rajasthan", "target_population": 12000},
    {"id": "udaipur", "name": "Udaipur", "state": "Rajasthan", "target_population": 10000},
    {"id": "kota", "name": "Kota", "state": "Rajasthan", "target_population": 8000},
    {"id": "ajmer", "name": "Ajmer", "state": "Rajasthan", "target_population": 7500},
]

BLOCKS = [
    {"id": "jaipur-sanganer", "name": "Sanganer", "district_id": "jaipur", "target_population": 4000},
    {"id": "jaipur-amer", "name": "Amer", "district_id": "jaipur", "target_population": 3500},
    {"id": "jodhpur-mandore", "name": "Mandore", "district_id": "jodhpur", "target_population": 3000},
    {"id": "udaipur-girwa", "name": "Girwa", "district_id": "udaipur", "target_population": 2800},
    {"id": "kota-ladpura", "name": "Ladpura", "district_id": "kota", "target_population": 2500},
    {"id": "ajmer-pisangan", "name": "Pisangan", "district_id": "ajmer", "target_population": 2000},
]
